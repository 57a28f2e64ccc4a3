"""Pydantic models shared by the executor, tracker, queue worker and API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

# Lifecycle: pending -> in_progress -> completed | failed, never backwards.
TaskStatus = Literal["pending", "in_progress", "completed", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            total=self.total + other.total,
        )


class TaskError(BaseModel):
    code: str
    message: str


class TaskMetadata(BaseModel):
    tools_used: int | None = None
    iterations: int | None = None
    duration_ms: int | None = None
    token_usage: TokenUsage | None = None
    attempt_count: int | None = None


class TaskRecord(BaseModel):
    """Persisted task status as seen by pollers."""

    task_id: str
    owner_id: str
    instruction: str
    status: TaskStatus = "pending"
    result: str | None = None
    error: TaskError | None = None
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ExecutionResult(BaseModel):
    """Return value of one successful agent run."""

    task_id: str
    result: str
    tools_used: int
    iterations: int
    duration_ms: int
    token_usage: TokenUsage | None = None

    def task_metadata(self) -> TaskMetadata:
        return TaskMetadata(
            tools_used=self.tools_used,
            iterations=self.iterations,
            duration_ms=self.duration_ms,
            token_usage=self.token_usage,
        )
