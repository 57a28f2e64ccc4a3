"""Typed state contract for the agent loop graph."""

from typing import TypedDict

from task_agent.agent.events import EventSink
from task_agent.llm.base import Completion, Turn
from task_agent.models import TokenUsage
from task_agent.tools.registry import ToolContext


class AgentState(TypedDict, total=False):
    context: ToolContext
    sink: EventSink | None
    system: str | None
    turns: list[Turn]
    last_completion: Completion | None
    model_calls: int
    tool_rounds: int
    tools_used: int
    token_usage: TokenUsage | None
    final_text: str | None
    stop_reason: str | None


def initial_state(
    context: ToolContext,
    instruction: str,
    *,
    system: str | None = None,
    sink: EventSink | None = None,
) -> AgentState:
    return {
        "context": context,
        "sink": sink,
        "system": system,
        "turns": [Turn.user_text(instruction)],
        "last_completion": None,
        "model_calls": 0,
        "tool_rounds": 0,
        "tools_used": 0,
        "token_usage": None,
        "final_text": None,
        "stop_reason": None,
    }
