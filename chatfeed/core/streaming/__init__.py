"""Streaming fan-out utilities."""

from .hub import BroadcastHub

__all__ = ["BroadcastHub"]
