"""Broadcast protocol types."""

from .event_types import BroadcastEvent
from .messages import ClientMessage, ServerMessage

__all__ = ["BroadcastEvent", "ClientMessage", "ServerMessage"]
