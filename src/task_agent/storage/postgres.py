"""PostgreSQL-backed task tracker with automatic table migration."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any

from task_agent.errors import TaskNotFound
from task_agent.models import TaskError, TaskMetadata, TaskRecord
from task_agent.storage.base import FINISHABLE_FROM, RUNNABLE_FROM


class PostgresTaskTracker:
    """Persist task status rows in PostgreSQL.

    Monotonic status is enforced in SQL: every mark is an ``UPDATE`` guarded by
    ``status = ANY(<allowed sources>)``, so concurrent writers cannot move a task
    backwards or overwrite the first terminal outcome.
    """

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("TASK_AGENT_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_tasks (
                    task_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    instruction TEXT NOT NULL,
                    status TEXT NOT NULL,
                    result TEXT,
                    error_json JSONB,
                    metadata_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    completed_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_tasks_owner_created
                ON agent_tasks(owner_id, created_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_tasks_completed_at
                ON agent_tasks(completed_at)
                WHERE completed_at IS NOT NULL
                """)
            conn.commit()

    def create(self, task_id: str, owner_id: str, instruction: str) -> TaskRecord:
        return self.try_create(task_id, owner_id, instruction)[0]

    def try_create(
        self, task_id: str, owner_id: str, instruction: str
    ) -> tuple[TaskRecord, bool]:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO agent_tasks (
                    task_id,
                    owner_id,
                    instruction,
                    status,
                    metadata_json,
                    created_at,
                    updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (task_id) DO NOTHING
                """,
                (task_id, owner_id, instruction, "pending", self._json_wrapper({}), now, now),
            )
            inserted = cursor.rowcount == 1
            conn.commit()
        created = self.get(task_id)
        if created is None:
            raise RuntimeError("Failed to load created task")
        return created, inserted

    def mark_running(self, task_id: str) -> TaskRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE agent_tasks
                SET status = 'in_progress',
                    updated_at = %s
                WHERE task_id = %s
                  AND status = ANY(%s)
                """,
                (now, task_id, list(RUNNABLE_FROM)),
            )
            conn.commit()
        return self._require(task_id)

    def mark_completed(self, task_id: str, result: str, metadata: TaskMetadata) -> TaskRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE agent_tasks
                SET status = 'completed',
                    result = %s,
                    metadata_json = %s,
                    updated_at = %s,
                    completed_at = %s
                WHERE task_id = %s
                  AND status = ANY(%s)
                """,
                (
                    result,
                    self._json_wrapper(metadata.model_dump(mode="json", exclude_none=True)),
                    now,
                    now,
                    task_id,
                    list(FINISHABLE_FROM),
                ),
            )
            conn.commit()
        return self._require(task_id)

    def mark_failed(
        self,
        task_id: str,
        error: TaskError,
        attempt_count: int | None = None,
    ) -> TaskRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE agent_tasks
                SET status = 'failed',
                    error_json = %s,
                    metadata_json = metadata_json || %s,
                    updated_at = %s,
                    completed_at = %s
                WHERE task_id = %s
                  AND status = ANY(%s)
                """,
                (
                    self._json_wrapper(error.model_dump()),
                    self._json_wrapper({"attempt_count": attempt_count}),
                    now,
                    now,
                    task_id,
                    list(FINISHABLE_FROM),
                ),
            )
            conn.commit()
        return self._require(task_id)

    def get(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agent_tasks WHERE task_id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, owner_id: str, limit: int = 50) -> list[TaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM agent_tasks
                WHERE owner_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (owner_id, limit),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def delete_finished_before(self, cutoff: datetime) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM agent_tasks
                WHERE status IN ('completed', 'failed')
                  AND completed_at < %s
                """,
                (cutoff,),
            )
            deleted = cursor.rowcount
            conn.commit()
        return max(0, int(deleted or 0))

    def _require(self, task_id: str) -> TaskRecord:
        record = self.get(task_id)
        if record is None:
            raise TaskNotFound(task_id)
        return record

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL task tracking requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if isinstance(parsed, dict):
            return parsed
        return None

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        error = cls._parse_json_optional(row.get("error_json"))
        completed_at = row.get("completed_at")
        return TaskRecord(
            task_id=str(row["task_id"]),
            owner_id=str(row["owner_id"]),
            instruction=row["instruction"],
            status=row["status"],
            result=row.get("result"),
            error=TaskError.model_validate(error) if error else None,
            metadata=TaskMetadata.model_validate(
                cls._parse_json_optional(row.get("metadata_json")) or {}
            ),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
            completed_at=cls._parse_datetime(completed_at) if completed_at is not None else None,
        )
