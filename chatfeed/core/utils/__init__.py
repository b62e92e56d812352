"""Utility helpers shared across core packages."""

from .env import get_env, get_env_bool, get_env_float, get_env_int, get_node_env

__all__ = [
    "get_env",
    "get_env_bool",
    "get_env_float",
    "get_env_int",
    "get_node_env",
]
