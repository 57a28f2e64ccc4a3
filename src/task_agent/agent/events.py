"""Typed lifecycle events emitted by the agent executor."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

EventKind = Literal["progress", "tool_use", "thinking", "complete", "error", "heartbeat"]
TERMINAL_EVENT_KINDS: frozenset[str] = frozenset({"complete", "error"})


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


class StreamEvent(BaseModel):
    kind: EventKind
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_timestamp)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_EVENT_KINDS

    @classmethod
    def progress(cls, message: str, percent: int | None = None) -> StreamEvent:
        data: dict[str, Any] = {"message": message}
        if percent is not None:
            data["progress"] = percent
        return cls(kind="progress", data=data)

    @classmethod
    def tool_use(
        cls,
        tool_name: str,
        tool_input: dict[str, Any],
        output: str | None = None,
    ) -> StreamEvent:
        data: dict[str, Any] = {"tool_name": tool_name, "input": tool_input}
        if output is not None:
            data["output"] = output
        return cls(kind="tool_use", data=data)

    @classmethod
    def thinking(cls, text: str) -> StreamEvent:
        return cls(kind="thinking", data={"content": text})

    @classmethod
    def complete(cls, payload: dict[str, Any]) -> StreamEvent:
        return cls(kind="complete", data=payload)

    @classmethod
    def error(cls, code: str, message: str) -> StreamEvent:
        return cls(kind="error", data={"code": code, "message": message})

    @classmethod
    def heartbeat(cls) -> StreamEvent:
        return cls(kind="heartbeat", data={"alive": True})


class EventSink(Protocol):
    """Receiver of executor events. Sends must never raise into the executor."""

    async def send(self, event: StreamEvent) -> None: ...
