"""Pydantic envelopes for the broadcast protocol.

Every server frame is ``{"type": <BroadcastEvent>, "data": {...}}``.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from .event_types import BroadcastEvent


class ServerMessage(BaseModel):
    type: BroadcastEvent
    data: dict[str, Any] = Field(default_factory=dict)

    def to_text(self) -> str:
        return self.model_dump_json()


class ClientMessage(BaseModel):
    """Inbound control frame; ``data`` is accepted and ignored."""

    type: str
    data: Optional[dict[str, Any]] = None


def connected(client_id: int) -> ServerMessage:
    return ServerMessage(type=BroadcastEvent.CONNECTED, data={"client_id": client_id})


def chat_message(event: BaseModel | dict[str, Any]) -> ServerMessage:
    payload = event.model_dump(mode="json") if isinstance(event, BaseModel) else dict(event)
    return ServerMessage(type=BroadcastEvent.CHAT_MESSAGE, data=payload)


def server_info(version: str, connected_clients: int) -> ServerMessage:
    return ServerMessage(
        type=BroadcastEvent.SERVER_INFO,
        data={"version": version, "connected_clients": connected_clients},
    )


def error(message: str) -> ServerMessage:
    return ServerMessage(type=BroadcastEvent.ERROR, data={"message": message})


def pong() -> ServerMessage:
    return ServerMessage(type=BroadcastEvent.PONG)


__all__ = [
    "ClientMessage",
    "ServerMessage",
    "chat_message",
    "connected",
    "error",
    "pong",
    "server_info",
]
