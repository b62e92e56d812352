"""Connection bookkeeping for broadcast clients."""

from .client_info import BroadcastSink, ClientInfo

__all__ = ["BroadcastSink", "ClientInfo"]
