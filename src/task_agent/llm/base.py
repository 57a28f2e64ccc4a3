"""Provider-neutral conversation and completion types."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, Field

from task_agent.models import TokenUsage


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    OTHER = "other"


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolCallBlock(BaseModel):
    """One model request to run a named tool; ``id`` correlates the result."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    call_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolCallBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Turn(BaseModel):
    role: Literal["user", "assistant"]
    content: list[ContentBlock] = Field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> Turn:
        return cls(role="user", content=[TextBlock(text=text)])


class Completion(BaseModel):
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: TokenUsage | None = None

    def text_segments(self) -> list[str]:
        return [block.text for block in self.content if isinstance(block, TextBlock)]

    def tool_calls(self) -> list[ToolCallBlock]:
        return [block for block in self.content if isinstance(block, ToolCallBlock)]


class CompletionClient(Protocol):
    """Boundary over the provider's tool-calling API."""

    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]],
        *,
        system: str | None = None,
    ) -> Completion: ...
