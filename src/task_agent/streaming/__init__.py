"""Push-event streaming of agent progress."""

from task_agent.agent.events import StreamEvent
from task_agent.streaming.manager import SSE_HEADERS, StreamingManager, format_sse
from task_agent.streaming.session import StreamSession

__all__ = ["SSE_HEADERS", "StreamEvent", "StreamSession", "StreamingManager", "format_sse"]
