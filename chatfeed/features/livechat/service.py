"""Registry of running polling sessions and the control operations on them."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Dict, Optional

from chatfeed.core.exceptions import NotFoundError
from chatfeed.core.streaming.hub import BroadcastHub

from .auth import AuthCredential
from .client import LiveChatClient
from .config import LiveChatConfig
from .page_resolver import HttpPageResolver, PageResolver
from .session import PollingSession
from .sinks import EmitSink, HubSink, NdjsonSink
from .token_codec import ChatMode

logger = logging.getLogger(__name__)


class LiveChatService:
    """Owns every :class:`PollingSession` in the process.

    Sessions publish to the shared :class:`BroadcastHub` and, when
    ``config.ndjson_dir`` is set, to one NDJSON file per session.
    """

    def __init__(
        self,
        config: LiveChatConfig,
        hub: BroadcastHub,
        *,
        client: Optional[LiveChatClient] = None,
        page_resolver: Optional[PageResolver] = None,
    ) -> None:
        self._config = config
        self._hub = hub
        self._client = client or LiveChatClient(config)
        self._resolver = page_resolver or HttpPageResolver(config)
        self._sessions: Dict[str, PollingSession] = {}
        self._lock = asyncio.Lock()

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    @property
    def config(self) -> LiveChatConfig:
        return self._config

    def _sinks_for(self, session_id: str) -> list[EmitSink]:
        sinks: list[EmitSink] = [HubSink(self._hub)]
        if self._config.ndjson_dir:
            sinks.append(NdjsonSink(Path(self._config.ndjson_dir) / f"{session_id}.ndjson"))
        return sinks

    async def start(
        self,
        url: str,
        mode: Optional[ChatMode] = None,
        credential: Optional[AuthCredential] = None,
    ) -> PollingSession:
        """Create and start a session for ``url``."""

        session_id = uuid.uuid4().hex[:12]
        session = PollingSession(
            session_id=session_id,
            url=url,
            config=self._config,
            client=self._client,
            page_resolver=self._resolver,
            sinks=self._sinks_for(session_id),
            mode=mode,
            credential=credential,
        )
        async with self._lock:
            self._sessions[session_id] = session
        await session.start()
        logger.info(
            "Started live chat session %s (mode=%s, authenticated=%s)",
            session_id,
            session.mode.value,
            credential is not None,
        )
        return session

    def get(self, session_id: str) -> PollingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", resource="session")
        return session

    def list(self) -> list[PollingSession]:
        return list(self._sessions.values())

    async def switch_mode(self, session_id: str, mode: ChatMode) -> ChatMode:
        return await self.get(session_id).switch_mode(mode)

    async def rearm(
        self, session_id: str, credential: Optional[AuthCredential] = None
    ) -> PollingSession:
        session = self.get(session_id)
        await session.rearm(credential)
        return session

    async def close(self, session_id: str) -> PollingSession:
        """Close a session and drop it from the registry."""

        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", resource="session")
        await session.close()
        return session

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        if sessions:
            logger.info("Closed %d live chat sessions", len(sessions))

    async def aclose(self) -> None:
        """Close sessions and the HTTP clients this service created."""

        await self.close_all()
        await self._client.aclose()
        if isinstance(self._resolver, HttpPageResolver):
            await self._resolver.aclose()


__all__ = ["LiveChatService"]
