"""Task tracker interface shared by every execution path."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from task_agent.models import TaskError, TaskMetadata, TaskRecord

# Allowed source statuses per transition. Anything else is a no-op.
RUNNABLE_FROM: tuple[str, ...] = ("pending",)
FINISHABLE_FROM: tuple[str, ...] = ("pending", "in_progress")


class TaskTracker(Protocol):
    """Single source of truth for task status.

    ``create`` is idempotent: a duplicate id returns the existing record.
    ``try_create`` also reports whether this call inserted the row, so callers can
    tell a task they just created from one another request already holds. Status
    only moves forward; marks against a task that is already past the source
    status are ignored so the first terminal outcome is the one kept.
    Unknown ids raise ``TaskNotFound`` on every mark; ``get`` returns ``None``.
    """

    def migrate(self) -> None: ...

    def create(self, task_id: str, owner_id: str, instruction: str) -> TaskRecord: ...

    def try_create(
        self, task_id: str, owner_id: str, instruction: str
    ) -> tuple[TaskRecord, bool]: ...

    def mark_running(self, task_id: str) -> TaskRecord: ...

    def mark_completed(self, task_id: str, result: str, metadata: TaskMetadata) -> TaskRecord: ...

    def mark_failed(
        self,
        task_id: str,
        error: TaskError,
        attempt_count: int | None = None,
    ) -> TaskRecord: ...

    def get(self, task_id: str) -> TaskRecord | None: ...

    def list_tasks(self, owner_id: str, limit: int = 50) -> list[TaskRecord]: ...

    def delete_finished_before(self, cutoff: datetime) -> int: ...
