"""Test configuration helpers."""

from __future__ import annotations

import os
from dataclasses import replace

import pytest

from chatfeed.core.config import reset_settings
from chatfeed.features.livechat.config import LiveChatConfig, reset_config

# Explicitly opt-in to the async plugins we rely on. Some execution environments
# disable plugin auto-discovery via ``PYTEST_DISABLE_PLUGIN_AUTOLOAD`` which
# prevents ``pytest-asyncio`` and AnyIO's plugin from loading even when the
# packages are installed.
pytest_plugins = ("anyio", "pytest_asyncio")

os.environ.setdefault("NODE_ENV", "test")


@pytest.fixture(autouse=True)
def _reset_cached_config():
    """Drop cached settings so monkeypatched environments take effect."""
    reset_settings()
    reset_config()
    yield
    reset_settings()
    reset_config()


@pytest.fixture
def livechat_config() -> LiveChatConfig:
    """Config with delays small enough for loop-driven tests."""
    return replace(
        LiveChatConfig.from_env(),
        fetch_url="https://chat.test/youtubei/v1/live_chat/get_live_chat",
        live_chat_page_url="https://chat.test/live_chat",
        request_timeout_seconds=1.0,
        min_poll_interval_seconds=0.0,
        max_poll_interval_seconds=0.01,
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.08,
        rate_limit_floor_seconds=0.05,
        max_retries=3,
        dedup_capacity=100,
        client_queue_size=8,
        default_mode="top_chat",
        ndjson_dir="",
    )
