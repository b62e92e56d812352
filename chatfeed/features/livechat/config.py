"""Live chat configuration loading from environment variables.

Environment Variables:
- LIVECHAT_ORIGIN: Origin used for signing and origin headers (default: https://www.youtube.com)
- LIVECHAT_FETCH_URL: Continuation fetch endpoint
- LIVECHAT_PAGE_URL: live_chat page used to re-mint tokens from reload continuations
- LIVECHAT_CLIENT_NAME: Innertube client name (default: WEB)
- LIVECHAT_USER_AGENT: User agent for page scrapes and fetches
- LIVECHAT_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 15)
- LIVECHAT_MIN_POLL_INTERVAL / LIVECHAT_MAX_POLL_INTERVAL: Clamp for server-suggested delay
- LIVECHAT_BACKOFF_BASE / LIVECHAT_BACKOFF_MAX: Exponential backoff bounds in seconds
- LIVECHAT_RATE_LIMIT_FLOOR: Minimum backoff after HTTP 429 (default: 10)
- LIVECHAT_MAX_RETRIES: Consecutive transient failures tolerated (default: 3)
- LIVECHAT_DEDUP_CAPACITY: Number of recent message ids remembered (default: 5000)
- LIVECHAT_CLIENT_QUEUE_SIZE: Outgoing queue bound per broadcast client (default: 256)
- LIVECHAT_DEFAULT_MODE: top_chat or all_chat (default: top_chat)
- LIVECHAT_NDJSON_DIR: When set, every session also appends events to <dir>/<session_id>.ndjson
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from chatfeed.core.utils.env import get_env_float, get_env_int

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class LiveChatConfig:
    """Live chat polling configuration."""

    origin: str
    fetch_url: str
    live_chat_page_url: str
    client_name: str
    user_agent: str
    request_timeout_seconds: float
    min_poll_interval_seconds: float
    max_poll_interval_seconds: float
    backoff_base_seconds: float
    backoff_max_seconds: float
    rate_limit_floor_seconds: float
    max_retries: int
    dedup_capacity: int
    client_queue_size: int
    default_mode: str
    ndjson_dir: str = ""

    @classmethod
    def from_env(cls) -> "LiveChatConfig":
        """Load configuration from environment variables."""
        return cls(
            origin=os.getenv("LIVECHAT_ORIGIN", "https://www.youtube.com"),
            fetch_url=os.getenv(
                "LIVECHAT_FETCH_URL",
                "https://www.youtube.com/youtubei/v1/live_chat/get_live_chat",
            ),
            live_chat_page_url=os.getenv(
                "LIVECHAT_PAGE_URL", "https://www.youtube.com/live_chat"
            ),
            client_name=os.getenv("LIVECHAT_CLIENT_NAME", "WEB"),
            user_agent=os.getenv("LIVECHAT_USER_AGENT", DEFAULT_USER_AGENT),
            request_timeout_seconds=get_env_float("LIVECHAT_REQUEST_TIMEOUT", 15.0),
            min_poll_interval_seconds=get_env_float("LIVECHAT_MIN_POLL_INTERVAL", 1.0),
            max_poll_interval_seconds=get_env_float("LIVECHAT_MAX_POLL_INTERVAL", 10.0),
            backoff_base_seconds=get_env_float("LIVECHAT_BACKOFF_BASE", 1.0),
            backoff_max_seconds=get_env_float("LIVECHAT_BACKOFF_MAX", 30.0),
            rate_limit_floor_seconds=get_env_float("LIVECHAT_RATE_LIMIT_FLOOR", 10.0),
            max_retries=get_env_int("LIVECHAT_MAX_RETRIES", 3),
            dedup_capacity=get_env_int("LIVECHAT_DEDUP_CAPACITY", 5000),
            client_queue_size=get_env_int("LIVECHAT_CLIENT_QUEUE_SIZE", 256),
            default_mode=os.getenv("LIVECHAT_DEFAULT_MODE", "top_chat").strip().lower(),
            ndjson_dir=os.getenv("LIVECHAT_NDJSON_DIR", ""),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []
        if not self.origin:
            errors.append("LIVECHAT_ORIGIN is required")
        if not self.fetch_url:
            errors.append("LIVECHAT_FETCH_URL is required")
        if self.request_timeout_seconds <= 0:
            errors.append("LIVECHAT_REQUEST_TIMEOUT must be positive")
        if self.min_poll_interval_seconds < 0:
            errors.append("LIVECHAT_MIN_POLL_INTERVAL must not be negative")
        if self.max_poll_interval_seconds < self.min_poll_interval_seconds:
            errors.append("LIVECHAT_MAX_POLL_INTERVAL must be >= LIVECHAT_MIN_POLL_INTERVAL")
        if self.backoff_base_seconds <= 0:
            errors.append("LIVECHAT_BACKOFF_BASE must be positive")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            errors.append("LIVECHAT_BACKOFF_MAX must be >= LIVECHAT_BACKOFF_BASE")
        if self.max_retries < 0:
            errors.append("LIVECHAT_MAX_RETRIES must not be negative")
        if self.dedup_capacity <= 0:
            errors.append("LIVECHAT_DEDUP_CAPACITY must be positive")
        if self.client_queue_size <= 0:
            errors.append("LIVECHAT_CLIENT_QUEUE_SIZE must be positive")
        if self.default_mode not in ("top_chat", "all_chat"):
            errors.append("LIVECHAT_DEFAULT_MODE must be top_chat or all_chat")
        return errors


_config: Optional[LiveChatConfig] = None


def get_livechat_config() -> LiveChatConfig:
    """Get live chat configuration (cached singleton)."""
    global _config
    if _config is None:
        _config = LiveChatConfig.from_env()
        errors = _config.validate()
        if errors:
            logger.error("Live chat config validation failed: %s", errors)
        else:
            logger.debug(
                "Live chat config loaded: fetch_url=%s, max_retries=%s",
                _config.fetch_url,
                _config.max_retries,
            )
    return _config


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _config
    _config = None
