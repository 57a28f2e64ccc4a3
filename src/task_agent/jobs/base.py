"""Durable job queue interface used by the API producer and the worker pool."""

from __future__ import annotations

from typing import Any, Protocol

from task_agent.jobs.models import Job, JobPayload, JobState


class JobQueue(Protocol):
    """At-least-once job delivery with per-job retry/backoff.

    ``enqueue`` is idempotent on ``payload.task_id``: while a job with that id
    exists (any state, until retention cleanup) a second enqueue returns the
    existing job and schedules nothing. A job that stays ``active`` longer than
    the stall timeout is handed out again.
    """

    async def connect(self) -> None: ...

    async def enqueue(self, payload: JobPayload) -> Job: ...

    async def dequeue(self, timeout_s: float = 1.0) -> Job | None: ...

    async def update_progress(self, job_id: str, progress: str) -> None: ...

    async def complete(self, job: Job, result: dict[str, Any]) -> None: ...

    async def fail(self, job: Job, reason: str) -> JobState: ...

    async def get(self, job_id: str) -> Job | None: ...

    async def counts(self) -> dict[str, int]: ...

    async def clean(self, keep_completed_s: float, keep_failed_s: float) -> int: ...

    async def close(self) -> None: ...
