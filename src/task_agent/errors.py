"""Error taxonomy shared by the executor, queue worker, tracker and HTTP layer.

Task-level failures are exceptions with a stable ``code``. Failures of a single
tool call are not exceptions at all: they travel back to the model as
``ToolOutcome(is_error=True)`` values.
"""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """Base class for errors surfaced to callers with a stable code."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ExecutionTimeout(AgentError):
    code = "TIMEOUT"
    status_code = 408
    retryable = True


class IterationLimitExceeded(AgentError):
    code = "ITERATION_LIMIT_EXCEEDED"
    status_code = 500
    retryable = True


class ExecutionError(AgentError):
    code = "EXECUTION_ERROR"
    status_code = 500
    retryable = True


class TaskAlreadyExists(AgentError):
    code = "ALREADY_EXISTS"
    status_code = 409

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' already exists", details={"task_id": task_id})


class TaskNotFound(AgentError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' not found", details={"task_id": task_id})


class ConfigurationError(AgentError):
    code = "CONFIGURATION_ERROR"


class ServiceUnavailable(AgentError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503


def error_payload(exc: BaseException) -> dict[str, str]:
    """Map any exception to the ``{code, message}`` envelope used on every surface."""
    if isinstance(exc, AgentError):
        return exc.to_payload()
    return {"code": ExecutionError.code, "message": str(exc) or type(exc).__name__}
