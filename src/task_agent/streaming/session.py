"""Per-connection event channel between the executor and one streaming client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from task_agent.agent.events import StreamEvent

logger = logging.getLogger(__name__)


class StreamSession:
    """Ordered event channel for one live connection.

    Sends after ``close()`` (from either side) are silent no-ops. A terminal
    event (complete or error) closes the session right after it is queued, so it
    is always the last event a reader sees.
    """

    def __init__(
        self,
        connection_id: str,
        *,
        heartbeat_s: float = 15.0,
        on_close: Callable[[StreamSession], None] | None = None,
    ) -> None:
        self.connection_id = connection_id
        self.heartbeat_s = heartbeat_s
        self.disconnected = False
        self._on_close = on_close
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._closed = False
        self._heartbeat_task: asyncio.Task[None] | None = None
        self.events_sent = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(),
                name=f"stream-heartbeat-{self.connection_id}",
            )

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug(
                "stream_session event=send_after_close connection_id=%s kind=%s",
                self.connection_id,
                event.kind,
            )
            return
        self._queue.put_nowait(event)
        self.events_sent += 1
        if event.is_terminal:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._heartbeat_task is not None and self._heartbeat_task is not asyncio.current_task():
            self._heartbeat_task.cancel()
        self._queue.put_nowait(None)
        logger.debug(
            "stream_session event=closed connection_id=%s events_sent=%d disconnected=%s",
            self.connection_id,
            self.events_sent,
            self.disconnected,
        )
        if self._on_close is not None:
            self._on_close(self)

    def mark_disconnected(self) -> None:
        """Remote side went away; stop producing events but leave the task running."""
        if self._closed:
            return
        self.disconnected = True
        logger.info("stream_session event=client_disconnected connection_id=%s", self.connection_id)
        self.close()

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if self.disconnected:
                return
            yield item

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_s)
            await self.send(StreamEvent.heartbeat())
