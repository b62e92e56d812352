"""Canonical broadcast message types.

Rules:
1. PascalCase names, matching what existing overlay clients already parse
2. One name per concept (no aliases)
3. Unknown client messages get an ``Error`` reply, never a silent drop
"""

from enum import StrEnum


class BroadcastEvent(StrEnum):
    """All broadcast message types."""

    # Server -> client
    CONNECTED = "Connected"
    CHAT_MESSAGE = "ChatMessage"
    SERVER_INFO = "ServerInfo"
    ERROR = "Error"
    PONG = "Pong"

    # Client -> server
    PING = "Ping"
    GET_INFO = "GetInfo"


CLIENT_EVENTS = frozenset({BroadcastEvent.PING, BroadcastEvent.GET_INFO})


__all__ = ["BroadcastEvent", "CLIENT_EVENTS"]
