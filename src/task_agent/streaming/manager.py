"""Live stream session tracking and SSE wire formatting."""

from __future__ import annotations

import json
import logging

from task_agent.agent.events import StreamEvent
from task_agent.streaming.session import StreamSession

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: StreamEvent) -> str:
    """Render one event as ``event: <kind>`` plus a JSON ``data:`` line."""
    payload = {**event.data, "timestamp": event.timestamp}
    return f"event: {event.kind}\ndata: {json.dumps(payload, default=str)}\n\n"


class StreamingManager:
    """Tracks every open ``StreamSession`` so shutdown can close them all."""

    def __init__(self, *, heartbeat_s: float = 15.0) -> None:
        self.heartbeat_s = heartbeat_s
        self._sessions: dict[str, StreamSession] = {}
        self._shutting_down = False

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    def attach(self, connection_id: str, *, start_heartbeat: bool = True) -> StreamSession:
        if self._shutting_down:
            raise RuntimeError("Streaming manager is shutting down")
        if connection_id in self._sessions:
            raise ValueError(f"Stream '{connection_id}' is already attached")

        session = StreamSession(
            connection_id,
            heartbeat_s=self.heartbeat_s,
            on_close=self._detach,
        )
        self._sessions[connection_id] = session
        if start_heartbeat:
            session.start_heartbeat()
        logger.info(
            "stream_manager event=attached connection_id=%s active=%d",
            connection_id,
            len(self._sessions),
        )
        return session

    def get(self, connection_id: str) -> StreamSession | None:
        return self._sessions.get(connection_id)

    def shutdown(self) -> None:
        self._shutting_down = True
        sessions = list(self._sessions.values())
        logger.info("stream_manager event=shutdown active=%d", len(sessions))
        for session in sessions:
            session.close()
        self._sessions.clear()

    def _detach(self, session: StreamSession) -> None:
        self._sessions.pop(session.connection_id, None)
