"""Emit sinks that receive ordered event batches from a polling session."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol, Sequence

from chatfeed.core.streaming.hub import BroadcastHub

from .models import ChatEvent

logger = logging.getLogger(__name__)


class EmitSink(Protocol):
    async def emit(self, events: Sequence[ChatEvent]) -> None: ...


class QueueSink:
    """Pushes each event onto an ``asyncio.Queue`` for in-process consumers."""

    def __init__(self, queue: Optional[asyncio.Queue[ChatEvent]] = None) -> None:
        self.queue: asyncio.Queue[ChatEvent] = queue if queue is not None else asyncio.Queue()

    async def emit(self, events: Sequence[ChatEvent]) -> None:
        for event in events:
            await self.queue.put(event)


class HubSink:
    """Forwards events to a :class:`BroadcastHub`."""

    def __init__(self, hub: BroadcastHub) -> None:
        self._hub = hub

    async def emit(self, events: Sequence[ChatEvent]) -> None:
        for event in events:
            await self._hub.publish(event)


class NdjsonSink:
    """Appends one JSON line per event; the persistence hand-off format."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def emit(self, events: Sequence[ChatEvent]) -> None:
        if not events:
            return
        lines = "".join(event.model_dump_json() + "\n" for event in events)
        async with self._lock:
            await asyncio.to_thread(self._append, lines)
        logger.debug("Appended %d events to %s", len(events), self._path)

    def _append(self, lines: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(lines)


__all__ = ["EmitSink", "HubSink", "NdjsonSink", "QueueSink"]
