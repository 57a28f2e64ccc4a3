"""Request and response bodies for the HTTP surface."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from task_agent.models import TaskError, TaskMetadata, TaskRecord, TaskStatus

MAX_BATCH_SIZE = 50


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class TaskContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("conversation_id", "conversationId"),
    )
    additional_instructions: str | None = Field(
        default=None,
        max_length=2000,
        validation_alias=AliasChoices("additional_instructions", "additionalInstructions"),
    )


class TaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    instruction: str = Field(
        min_length=1,
        max_length=2000,
        validation_alias=AliasChoices("instruction", "task"),
    )
    owner_id: str = Field(
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("owner_id", "ownerId", "user_id", "userId"),
    )
    context: TaskContext | None = None
    idempotency_key: str | None = Field(
        default=None,
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
    )

    def conversation_id(self) -> str | None:
        return self.context.conversation_id if self.context else None

    def metadata(self) -> dict[str, Any]:
        if self.context and self.context.additional_instructions:
            return {"additional_instructions": self.context.additional_instructions}
        return {}


class BatchTaskRequest(BaseModel):
    tasks: list[TaskRequest] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class TaskResultResponse(BaseModel):
    success: bool = True
    task_id: str
    result: str
    metadata: TaskMetadata
    timestamp: str = Field(default_factory=utc_now_iso)


class QueuedTaskResponse(BaseModel):
    success: bool = True
    task_id: str
    job_id: str
    status: TaskStatus = "pending"
    message: str = "Task queued for processing"
    timestamp: str = Field(default_factory=utc_now_iso)


class BatchQueuedResponse(BaseModel):
    success: bool = True
    count: int
    tasks: list[QueuedTaskResponse]
    timestamp: str = Field(default_factory=utc_now_iso)


class TaskStatusResponse(BaseModel):
    success: bool = True
    task_id: str
    status: TaskStatus
    result: str | None = None
    error: TaskError | None = None
    metadata: TaskMetadata | None = None
    progress: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_record(cls, record: TaskRecord, *, progress: str | None = None) -> TaskStatusResponse:
        return cls(
            task_id=record.task_id,
            status=record.status,
            result=record.result,
            error=record.error,
            metadata=record.metadata,
            progress=progress,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )


class TaskListResponse(BaseModel):
    success: bool = True
    count: int
    tasks: list[TaskStatusResponse]
