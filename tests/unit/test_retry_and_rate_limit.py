import asyncio

import pytest

from task_agent.jobs import RetryPolicy, SlidingWindowRateLimiter


def test_retry_delays_double_and_cap() -> None:
    policy = RetryPolicy(max_retries=5, base_delay_s=1.0, max_delay_s=5.0)

    assert policy.max_attempts == 6
    assert [policy.delay_for(n) for n in range(0, 6)] == [0.0, 1.0, 2.0, 4.0, 5.0, 5.0]


def test_rate_limiter_rejects_bad_configuration() -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_starts=0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window_s=0)


@pytest.mark.asyncio
async def test_rate_limiter_waits_for_window_to_slide() -> None:
    limiter = SlidingWindowRateLimiter(max_starts=2, window_s=0.1)
    loop = asyncio.get_running_loop()

    started = loop.time()
    await limiter.acquire()
    await limiter.acquire()
    assert limiter.in_window() == 2

    await limiter.acquire()
    elapsed = loop.time() - started

    assert elapsed >= 0.09
