import asyncio

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio

from task_agent.jobs import InMemoryJobQueue, JobPayload, RedisJobQueue, RetryPolicy


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _payload(task_id: str = "task-1") -> JobPayload:
    return JobPayload(task_id=task_id, owner_id="user-1", instruction="list categories")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(params=["memory", "redis"])
async def queue(request, clock):
    policy = RetryPolicy(max_retries=3, base_delay_s=1.0, max_delay_s=60.0)
    if request.param == "memory":
        job_queue = InMemoryJobQueue(retry_policy=policy, stall_timeout_s=30.0, clock=clock)
    else:
        job_queue = RedisJobQueue(
            name="test-queue",
            retry_policy=policy,
            stall_timeout_s=30.0,
            client=fakeredis.aioredis.FakeRedis(decode_responses=True),
            clock=clock,
        )
    await job_queue.connect()
    yield job_queue
    await job_queue.close()


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_on_task_id(queue) -> None:
    first = await queue.enqueue(_payload())
    second = await queue.enqueue(_payload())

    assert first.job_id == second.job_id == "task-1"
    assert first.max_attempts == 4
    assert (await queue.counts())["waiting"] == 1

    job = await queue.dequeue(timeout_s=0)
    assert job is not None
    assert job.state == "active"
    assert job.attempt_number == 1
    assert await queue.dequeue(timeout_s=0) is None


@pytest.mark.asyncio
async def test_concurrent_enqueues_of_one_task_create_one_job(queue) -> None:
    jobs = await asyncio.gather(*(queue.enqueue(_payload()) for _ in range(5)))

    assert {job.job_id for job in jobs} == {"task-1"}
    assert (await queue.counts())["waiting"] == 1
    assert await queue.dequeue(timeout_s=0) is not None
    assert await queue.dequeue(timeout_s=0) is None


@pytest.mark.asyncio
async def test_producers_on_separate_connections_share_one_job(clock) -> None:
    server = fakeredis.FakeServer()
    producers = [
        RedisJobQueue(
            name="shared",
            client=fakeredis.aioredis.FakeRedis(server=server, decode_responses=True),
            clock=clock,
        )
        for _ in range(3)
    ]

    await asyncio.gather(*(producer.enqueue(_payload()) for producer in producers))

    assert (await producers[0].counts())["waiting"] == 1
    job = await producers[1].get("task-1")
    assert job is not None
    assert job.payload.instruction == "list categories"


@pytest.mark.asyncio
async def test_leftover_hash_without_payload_is_replaced_and_queued(clock) -> None:
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    queue = RedisJobQueue(name="test-queue", client=client, clock=clock)
    await client.hset("task-agent:test-queue:job:task-1", "created_at", "1.0")
    assert await queue.get("task-1") is None

    job = await queue.enqueue(_payload())

    assert job.state == "waiting"
    dequeued = await queue.dequeue(timeout_s=0)
    assert dequeued is not None
    assert dequeued.job_id == "task-1"
    assert dequeued.created_at == clock()


@pytest.mark.asyncio
async def test_failed_attempts_back_off_then_fail_permanently(queue, clock) -> None:
    await queue.enqueue(_payload())
    delays: list[float] = []

    for expected_attempt in (1, 2, 3):
        job = await queue.dequeue(timeout_s=0)
        assert job is not None
        assert job.attempt_number == expected_attempt
        assert job.is_final_attempt is False

        assert await queue.fail(job, "boom") == "delayed"
        stored = await queue.get(job.job_id)
        delays.append(stored.next_attempt_at - clock.now)

        # Not yet due.
        assert await queue.dequeue(timeout_s=0) is None
        clock.advance(delays[-1])

    assert delays == [1.0, 2.0, 4.0]

    last = await queue.dequeue(timeout_s=0)
    assert last is not None
    assert last.is_final_attempt is True
    assert await queue.fail(last, "boom") == "failed"

    stored = await queue.get("task-1")
    assert stored.state == "failed"
    assert stored.attempts_made == 4
    assert stored.failed_reason == "boom"
    assert (await queue.counts())["failed"] == 1


@pytest.mark.asyncio
async def test_complete_records_result_and_progress(queue) -> None:
    await queue.enqueue(_payload())
    job = await queue.dequeue(timeout_s=0)

    await queue.update_progress(job.job_id, "executing")
    assert (await queue.get(job.job_id)).progress == "executing"

    await queue.complete(job, {"result": "ok"})
    stored = await queue.get(job.job_id)

    assert stored.state == "completed"
    assert stored.result == {"result": "ok"}
    assert stored.attempts_made == 1
    assert (await queue.counts())["active"] == 0


@pytest.mark.asyncio
async def test_stalled_job_is_requeued_after_lease(queue, clock) -> None:
    await queue.enqueue(_payload())
    assert await queue.dequeue(timeout_s=0) is not None

    clock.advance(31.0)
    again = await queue.dequeue(timeout_s=0)

    assert again is not None
    assert again.job_id == "task-1"


@pytest.mark.asyncio
async def test_clean_removes_only_expired_finished_jobs(queue, clock) -> None:
    await queue.enqueue(_payload("old"))
    await queue.enqueue(_payload("new"))
    old = await queue.dequeue(timeout_s=0)
    await queue.complete(old, {})
    clock.advance(100.0)
    new = await queue.dequeue(timeout_s=0)
    await queue.complete(new, {})

    removed = await queue.clean(keep_completed_s=50.0, keep_failed_s=50.0)

    assert removed == 1
    assert await queue.get("old") is None
    assert await queue.get("new") is not None
