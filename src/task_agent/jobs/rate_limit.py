"""Sliding-window limit on how many jobs may start per time window."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_starts: int = 10,
        window_s: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_starts < 1:
            raise ValueError("max_starts must be at least 1")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.max_starts = max_starts
        self.window_s = window_s
        self._clock = clock
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a start slot is free in the current window, then take it."""
        async with self._lock:
            while True:
                now = self._clock()
                window_start = now - self.window_s
                while self._starts and self._starts[0] <= window_start:
                    self._starts.popleft()
                if len(self._starts) < self.max_starts:
                    self._starts.append(now)
                    return
                wait_s = self._starts[0] + self.window_s - now
                logger.debug("rate_limit event=throttled wait_s=%.3f", wait_s)
                await asyncio.sleep(max(wait_s, 0.001))

    def in_window(self) -> int:
        window_start = self._clock() - self.window_s
        return sum(1 for ts in self._starts if ts > window_start)
