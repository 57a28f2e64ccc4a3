"""In-memory task tracker for tests and local development."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from task_agent.errors import TaskNotFound
from task_agent.models import TERMINAL_STATUSES, TaskError, TaskMetadata, TaskRecord
from task_agent.storage.base import FINISHABLE_FROM, RUNNABLE_FROM


class InMemoryTaskTracker:
    """Simple in-memory implementation; keeps a transition log for assertions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskRecord] = {}
        self.transitions: dict[str, list[str]] = {}

    def migrate(self) -> None:
        return None

    def create(self, task_id: str, owner_id: str, instruction: str) -> TaskRecord:
        return self.try_create(task_id, owner_id, instruction)[0]

    def try_create(
        self, task_id: str, owner_id: str, instruction: str
    ) -> tuple[TaskRecord, bool]:
        now = datetime.now(UTC)
        with self._lock:
            existing = self._tasks.get(task_id)
            if existing is not None:
                return existing, False
            record = TaskRecord(
                task_id=task_id,
                owner_id=owner_id,
                instruction=instruction,
                status="pending",
                created_at=now,
                updated_at=now,
            )
            self._tasks[task_id] = record
            self.transitions[task_id] = ["pending"]
            return record, True

    def mark_running(self, task_id: str) -> TaskRecord:
        return self._transition(task_id, RUNNABLE_FROM, {"status": "in_progress"})

    def mark_completed(self, task_id: str, result: str, metadata: TaskMetadata) -> TaskRecord:
        return self._transition(
            task_id,
            FINISHABLE_FROM,
            {"status": "completed", "result": result, "metadata": metadata},
        )

    def mark_failed(
        self,
        task_id: str,
        error: TaskError,
        attempt_count: int | None = None,
    ) -> TaskRecord:
        return self._transition(
            task_id,
            FINISHABLE_FROM,
            {"status": "failed", "error": error},
            metadata_update={"attempt_count": attempt_count},
        )

    def get(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(self, owner_id: str, limit: int = 50) -> list[TaskRecord]:
        with self._lock:
            owned = [item for item in self._tasks.values() if item.owner_id == owner_id]
        owned.sort(key=lambda item: item.created_at, reverse=True)
        return owned[:limit]

    def delete_finished_before(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                task_id
                for task_id, item in self._tasks.items()
                if item.status in TERMINAL_STATUSES
                and item.completed_at is not None
                and item.completed_at < cutoff
            ]
            for task_id in doomed:
                del self._tasks[task_id]
        return len(doomed)

    def _require(self, task_id: str) -> TaskRecord:
        current = self._tasks.get(task_id)
        if current is None:
            raise TaskNotFound(task_id)
        return current

    def _transition(
        self,
        task_id: str,
        allowed_from: tuple[str, ...],
        changes: dict,
        *,
        metadata_update: dict | None = None,
    ) -> TaskRecord:
        now = datetime.now(UTC)
        with self._lock:
            current = self._require(task_id)
            if current.status not in allowed_from:
                return current
            update = {**changes, "updated_at": now}
            if metadata_update:
                update["metadata"] = current.metadata.model_copy(update=metadata_update)
            if changes["status"] in TERMINAL_STATUSES:
                update["completed_at"] = now
            updated = current.model_copy(update=update)
            self._tasks[task_id] = updated
            self.transitions[task_id].append(updated.status)
            return updated
