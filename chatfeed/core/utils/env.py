"""Common environment helpers used across chatfeed."""

from __future__ import annotations

import os

from chatfeed.core.exceptions import ConfigurationError

__all__ = ["get_env", "get_env_bool", "get_env_float", "get_env_int", "get_node_env"]

_TRUTHY = {"1", "true", "yes", "on"}


def get_env(key: str, default: str | None = None, *, required: bool = False) -> str | None:
    """Return an environment variable and optionally enforce its presence."""

    value = os.getenv(key, default)
    if required and value is None:
        raise ConfigurationError(f"Required environment variable {key} not set", key=key)
    return value


def get_env_bool(key: str, default: bool) -> bool:
    """Return a boolean flag; unset means ``default``."""

    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def get_env_float(key: str, default: float) -> float:
    """Return a float setting, raising ``ConfigurationError`` on garbage."""

    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}", key=key) from exc


def get_env_int(key: str, default: int) -> int:
    """Return an integer setting, raising ``ConfigurationError`` on garbage."""

    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", key=key) from exc


def get_node_env() -> str:
    """Return the current runtime environment label."""

    return (get_env("NODE_ENV", default="local") or "local").strip()

