"""Fan-out of the normalized chat stream to local broadcast clients.

Each client gets a bounded outgoing queue drained by its own writer task.
``publish`` serializes an event once and only ever uses ``put_nowait``; a
client whose queue is full is disconnected instead of slowing everybody else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chatfeed.core.connections.client_info import BroadcastSink, ClientInfo
from chatfeed.core.websocket import messages
from chatfeed.core.exceptions import ClientDisconnectedError
from chatfeed.core.websocket.event_types import CLIENT_EVENTS, BroadcastEvent

logger = logging.getLogger(__name__)

# WebSocket close code for "try again later".
BACKPRESSURE_CLOSE_CODE = 1013
CLOSE_TIMEOUT_SECONDS = 2.0


class BroadcastHub:
    """Registry of broadcast clients guarded by a single lock."""

    def __init__(self, *, queue_size: int = 256, version: str = "") -> None:
        self._queue_size = queue_size
        self._version = version
        self._clients: Dict[int, ClientInfo] = {}
        self._lock = asyncio.Lock()
        self._next_id = 1
        self._background: set[asyncio.Task[None]] = set()
        self._published = 0

    async def register(self, sink: BroadcastSink) -> int:
        """Add ``sink`` and greet it with a ``Connected`` frame."""

        async with self._lock:
            client_id = self._next_id
            self._next_id += 1
            info = ClientInfo(
                client_id=client_id,
                sink=sink,
                queue=asyncio.Queue(maxsize=self._queue_size),
            )
            info.queue.put_nowait(messages.connected(client_id).to_text())
            info.writer = asyncio.create_task(
                self._writer(info), name=f"broadcast-writer-{client_id}"
            )
            self._clients[client_id] = info
            total = len(self._clients)

        logger.info("Broadcast client %s connected (total=%s)", client_id, total)
        return client_id

    async def unregister(self, client_id: int, *, close_code: Optional[int] = None) -> bool:
        """Remove a client; returns ``False`` when it was already gone."""

        async with self._lock:
            info = self._clients.pop(client_id, None)
            total = len(self._clients)
        if info is None:
            return False

        if info.writer is not None and info.writer is not asyncio.current_task():
            info.writer.cancel()
        if close_code is not None:
            self._spawn(self._close_sink(info, close_code))
        logger.info("Broadcast client %s disconnected (total=%s)", client_id, total)
        return True

    async def publish(self, event: BaseModel | Dict[str, Any]) -> int:
        """Queue ``event`` for every client; returns how many accepted it."""

        text = messages.chat_message(event).to_text()
        return await self.publish_text(text)

    async def publish_text(self, text: str) -> int:
        overflowed: list[int] = []
        delivered = 0
        async with self._lock:
            for client_id, info in self._clients.items():
                try:
                    info.queue.put_nowait(text)
                    delivered += 1
                except asyncio.QueueFull:
                    overflowed.append(client_id)
            self._published += 1

        for client_id in overflowed:
            logger.warning("Broadcast client %s queue full; disconnecting", client_id)
            await self.unregister(client_id, close_code=BACKPRESSURE_CLOSE_CODE)
        return delivered

    async def handle_message(self, client_id: int, text: str) -> None:
        """Answer a client control frame through that client's queue.

        Raises ``ClientDisconnectedError`` when the client has already been dropped,
        for example after a queue overflow.
        """

        async with self._lock:
            info = self._clients.get(client_id)
            total = len(self._clients)
        if info is None:
            raise ClientDisconnectedError(
                f"Broadcast client {client_id} is not connected", client_id=client_id
            )

        reply = self._control_reply(text, total)
        if reply.type is BroadcastEvent.PONG:
            info.touch()
        try:
            info.queue.put_nowait(reply.to_text())
        except asyncio.QueueFull:
            logger.warning("Broadcast client %s queue full on control reply; disconnecting", client_id)
            await self.unregister(client_id, close_code=BACKPRESSURE_CLOSE_CODE)

    def _control_reply(self, text: str, connected_clients: int) -> messages.ServerMessage:
        try:
            message = messages.ClientMessage.model_validate_json(text)
        except PydanticValidationError:
            logger.debug("Malformed broadcast control frame: %.200s", text)
            return messages.error("Malformed message")

        if message.type not in CLIENT_EVENTS:
            logger.debug("Unknown broadcast control type %s", message.type)
            return messages.error(f"Unknown message type: {message.type}")
        if message.type == BroadcastEvent.PING:
            return messages.pong()
        return messages.server_info(self._version, connected_clients)

    async def _writer(self, info: ClientInfo) -> None:
        try:
            while True:
                text = await info.queue.get()
                await info.sink.send_text(text)
                info.messages_sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - any transport failure ends the client
            logger.info("Broadcast client %s send failed: %s", info.client_id, exc)
            await self.unregister(info.client_id)

    async def _close_sink(self, info: ClientInfo, code: int) -> None:
        try:
            await asyncio.wait_for(info.sink.close(code=code), timeout=CLOSE_TIMEOUT_SECONDS)
        except Exception as exc:  # noqa: BLE001 - closing an already-dead transport
            logger.debug("Closing broadcast client %s failed: %s", info.client_id, exc)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def connected_clients(self) -> int:
        return len(self._clients)

    @property
    def published_count(self) -> int:
        return self._published

    def client_ids(self) -> list[int]:
        return list(self._clients)

    async def close(self) -> None:
        """Disconnect every client and wait for pending closes."""

        for client_id in self.client_ids():
            await self.unregister(client_id, close_code=1001)
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


__all__ = ["BroadcastHub"]
