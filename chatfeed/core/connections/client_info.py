"""Broadcast client bookkeeping.

A broadcast client is anything that can accept a serialized frame and be
closed; a FastAPI ``WebSocket`` satisfies :class:`BroadcastSink` as-is.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional, Protocol


class BroadcastSink(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


@dataclass
class ClientInfo:
    """Metadata and outgoing queue of one connected broadcast client."""

    client_id: int
    sink: BroadcastSink
    queue: asyncio.Queue[str]
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_ping: datetime = field(default_factory=lambda: datetime.now(UTC))
    messages_sent: int = 0
    writer: Optional[asyncio.Task[None]] = None

    def touch(self) -> None:
        self.last_ping = datetime.now(UTC)


__all__ = ["BroadcastSink", "ClientInfo"]
