"""Cross-cutting settings for the chatfeed process.

Feature-specific configuration lives beside the feature
(``chatfeed.features.livechat.config``); this module only carries what the
application shell needs: environment label, debug flag and where the local
broadcast server binds.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Optional

from chatfeed import __version__
from chatfeed.core.utils.env import get_env, get_env_bool, get_env_int, get_node_env

logger = logging.getLogger(__name__)

_LOOPBACK_NAMES = {"localhost"}


def is_loopback_host(host: str) -> bool:
    """Return True when ``host`` names a loopback interface."""

    host = (host or "").strip()
    if host.lower() in _LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(host.strip("[]")).is_loopback
    except ValueError:
        return False


@dataclass(frozen=True)
class Settings:
    """Dependency injection wrapper for process-wide settings."""

    environment: str = field(default_factory=get_node_env)
    debug_mode: bool = field(default_factory=lambda: get_env_bool("DEBUG_MODE", False))
    broadcast_host: str = field(
        default_factory=lambda: get_env("BROADCAST_HOST", default="127.0.0.1") or "127.0.0.1"
    )
    broadcast_port: int = field(default_factory=lambda: get_env_int("BROADCAST_PORT", 8765))
    version: str = __version__

    def validate(self) -> list[str]:
        """Validate settings and return list of errors."""
        errors = []
        if not is_loopback_host(self.broadcast_host):
            errors.append(
                f"BROADCAST_HOST must be a loopback address, got {self.broadcast_host!r}"
            )
        if not 0 < self.broadcast_port < 65536:
            errors.append(f"BROADCAST_PORT out of range: {self.broadcast_port}")
        return errors


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get process settings (cached singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.debug(
            "Settings loaded: env=%s, broadcast=%s:%s",
            _settings.environment,
            _settings.broadcast_host,
            _settings.broadcast_port,
        )
    return _settings


def reset_settings() -> None:
    """Reset cached settings (for testing)."""
    global _settings
    _settings = None


__all__ = ["Settings", "get_settings", "is_loopback_host", "reset_settings"]
