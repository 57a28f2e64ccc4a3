"""Queue job records and the retry policy applied to them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field

JobState = Literal["waiting", "delayed", "active", "completed", "failed"]

# Coarse progress markers written by the worker, in order.
PROGRESS_STEPS: tuple[str, ...] = ("queued", "starting", "executing", "finalizing", "done")


class JobPayload(BaseModel):
    task_id: str
    owner_id: str
    instruction: str
    conversation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    """One queued execution request. ``job_id`` equals the task id."""

    job_id: str
    payload: JobPayload
    state: JobState = "waiting"
    attempts_made: int = 0
    max_attempts: int = 4
    progress: str = "queued"
    result: dict[str, Any] | None = None
    failed_reason: str | None = None
    created_at: float
    processed_at: float | None = None
    finished_at: float | None = None
    next_attempt_at: float | None = None

    @property
    def attempt_number(self) -> int:
        """1-based number of the attempt currently running or about to run."""
        return self.attempts_made + 1

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt_number >= self.max_attempts


@dataclass(frozen=True)
class RetryPolicy:
    """``max_retries`` retries after the first attempt, doubling delay from ``base_delay_s``."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 60.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, failed_attempts: int) -> float:
        """Delay before the next attempt after ``failed_attempts`` failures (1-based)."""
        if failed_attempts < 1:
            return 0.0
        return min(self.base_delay_s * (2 ** (failed_attempts - 1)), self.max_delay_s)
