"""In-process job queue for tests and single-process development."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from task_agent.jobs.models import Job, JobPayload, JobState, RetryPolicy

logger = logging.getLogger(__name__)


class InMemoryJobQueue:
    def __init__(
        self,
        *,
        retry_policy: RetryPolicy | None = None,
        stall_timeout_s: float = 600.0,
        clock: Callable[[], float] = time.time,
        poll_interval_s: float = 0.01,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.stall_timeout_s = stall_timeout_s
        self._clock = clock
        self._poll_interval_s = poll_interval_s
        self._jobs: dict[str, Job] = {}
        self._wait: deque[str] = deque()
        self._delayed: dict[str, float] = {}
        self._leases: dict[str, float] = {}

    async def connect(self) -> None:
        return None

    async def enqueue(self, payload: JobPayload) -> Job:
        existing = self._jobs.get(payload.task_id)
        if existing is not None:
            logger.info("job_queue event=duplicate_enqueue job_id=%s state=%s", existing.job_id, existing.state)
            return existing.model_copy()
        job = Job(
            job_id=payload.task_id,
            payload=payload,
            max_attempts=self.retry_policy.max_attempts,
            created_at=self._clock(),
        )
        self._jobs[job.job_id] = job
        self._wait.appendleft(job.job_id)
        logger.info("job_queue event=enqueued job_id=%s", job.job_id)
        return job.model_copy()

    async def dequeue(self, timeout_s: float = 1.0) -> Job | None:
        deadline = time.monotonic() + timeout_s
        while True:
            self._promote_due()
            if self._wait:
                job_id = self._wait.pop()
                now = self._clock()
                job = self._jobs[job_id].model_copy(
                    update={"state": "active", "processed_at": now, "next_attempt_at": None}
                )
                self._jobs[job_id] = job
                self._leases[job_id] = now + self.stall_timeout_s
                return job.model_copy()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(remaining, self._poll_interval_s))

    async def update_progress(self, job_id: str, progress: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            self._jobs[job_id] = job.model_copy(update={"progress": progress})

    async def complete(self, job: Job, result: dict[str, Any]) -> None:
        self._leases.pop(job.job_id, None)
        current = self._jobs[job.job_id]
        self._jobs[job.job_id] = current.model_copy(
            update={
                "state": "completed",
                "result": result,
                "attempts_made": job.attempts_made + 1,
                "finished_at": self._clock(),
            }
        )

    async def fail(self, job: Job, reason: str) -> JobState:
        self._leases.pop(job.job_id, None)
        attempts_made = job.attempts_made + 1
        now = self._clock()
        current = self._jobs[job.job_id]
        if attempts_made < job.max_attempts:
            delay = self.retry_policy.delay_for(attempts_made)
            self._delayed[job.job_id] = now + delay
            self._jobs[job.job_id] = current.model_copy(
                update={
                    "state": "delayed",
                    "attempts_made": attempts_made,
                    "failed_reason": reason,
                    "next_attempt_at": now + delay,
                }
            )
            logger.info(
                "job_queue event=retry_scheduled job_id=%s attempts_made=%d delay_s=%.3f",
                job.job_id,
                attempts_made,
                delay,
            )
            return "delayed"

        self._jobs[job.job_id] = current.model_copy(
            update={
                "state": "failed",
                "attempts_made": attempts_made,
                "failed_reason": reason,
                "finished_at": now,
            }
        )
        logger.warning("job_queue event=failed job_id=%s attempts_made=%d", job.job_id, attempts_made)
        return "failed"

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy() if job is not None else None

    async def counts(self) -> dict[str, int]:
        totals = {"waiting": 0, "delayed": 0, "active": 0, "completed": 0, "failed": 0}
        for job in self._jobs.values():
            totals[job.state] += 1
        return totals

    async def clean(self, keep_completed_s: float, keep_failed_s: float) -> int:
        now = self._clock()
        keep = {"completed": keep_completed_s, "failed": keep_failed_s}
        doomed = [
            job.job_id
            for job in self._jobs.values()
            if job.state in keep
            and job.finished_at is not None
            and job.finished_at <= now - keep[job.state]
        ]
        for job_id in doomed:
            del self._jobs[job_id]
        return len(doomed)

    async def close(self) -> None:
        return None

    def _promote_due(self) -> None:
        now = self._clock()
        for job_id, due_at in sorted(self._delayed.items(), key=lambda item: item[1]):
            if due_at > now:
                break
            del self._delayed[job_id]
            self._jobs[job_id] = self._jobs[job_id].model_copy(update={"state": "waiting"})
            self._wait.appendleft(job_id)
        for job_id, lease_until in list(self._leases.items()):
            if lease_until <= now:
                del self._leases[job_id]
                logger.warning("job_queue event=stalled_requeued job_id=%s", job_id)
                self._jobs[job_id] = self._jobs[job_id].model_copy(update={"state": "waiting"})
                self._wait.appendleft(job_id)
