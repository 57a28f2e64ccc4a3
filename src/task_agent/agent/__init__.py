"""Agent loop: executor, graph and lifecycle events."""

from task_agent.agent.events import EventSink, StreamEvent
from task_agent.agent.executor import AgentExecutor
from task_agent.agent.graph import NO_TEXT_RESULT, build_agent_graph

__all__ = [
    "NO_TEXT_RESULT",
    "AgentExecutor",
    "EventSink",
    "StreamEvent",
    "build_agent_graph",
]
