from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import socketio

from .domain import BroadcastMessage, event_topic, wire_payload

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    def publish(self, message: BroadcastMessage) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class SocketIOFanout(Broadcaster):
    def __init__(
        self,
        server: Any | None = None,
        cors_allowed_origins: list[str] | str = "*",
    ) -> None:
        if server is None:
            if isinstance(cors_allowed_origins, list) and cors_allowed_origins == ["*"]:
                cors_allowed_origins = "*"
            server = socketio.AsyncServer(
                async_mode="asgi",
                cors_allowed_origins=cors_allowed_origins,
                logger=False,
                engineio_logger=False,
            )
        self.sio = server
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._pump: asyncio.Task | None = None

        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("joinEventRoom", self._on_join_room)
        self.sio.on("leaveEventRoom", self._on_leave_room)

    @property
    def running(self) -> bool:
        return self._pump is not None and not self._pump.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pump = asyncio.create_task(self._drain(), name="socketio-fanout")
        logger.info("Realtime fan-out started")

    async def stop(self) -> None:
        pump, self._pump = self._pump, None
        self._loop = None
        self._queue = None
        if pump is None:
            return
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        logger.info("Realtime fan-out stopped")

    async def flush(self) -> None:
        """Wait until everything published so far has been handed to Socket.IO."""

        # publish() は call_soon_threadsafe 経由なので、先にループを一巡させる
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()

    def publish(self, message: BroadcastMessage) -> None:
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            logger.debug("Fan-out not running; dropped %s", message.wire_name)
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, message)
        except RuntimeError:
            logger.warning("Event loop closed; dropped %s", message.wire_name)

    async def _drain(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            message = await queue.get()
            try:
                await self._deliver(message)
            except Exception:
                logger.exception(
                    "Failed to emit %s for event %s", message.wire_name, message.event_id
                )
            finally:
                queue.task_done()

    async def _deliver(self, message: BroadcastMessage) -> None:
        # room=None は全クライアントへ送信
        await self.sio.emit(message.wire_name, wire_payload(message), room=message.topic)

    async def _on_connect(self, sid: str, environ: dict[str, Any], auth: Any | None = None):
        logger.info("Client connected: %s", sid)

    async def _on_disconnect(self, sid: str, *args: Any):
        logger.info("Client disconnected: %s", sid)

    async def _on_join_room(self, sid: str, event_id: Any):
        if not isinstance(event_id, str) or not event_id:
            logger.warning("Ignoring joinEventRoom from %s with event id %r", sid, event_id)
            return
        await self.sio.enter_room(sid, event_topic(event_id))
        logger.info("Client %s joined room %s", sid, event_topic(event_id))

    async def _on_leave_room(self, sid: str, event_id: Any):
        if not isinstance(event_id, str) or not event_id:
            logger.warning("Ignoring leaveEventRoom from %s with event id %r", sid, event_id)
            return
        await self.sio.leave_room(sid, event_topic(event_id))
        logger.info("Client %s left room %s", sid, event_topic(event_id))
