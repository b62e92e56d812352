"""Shared fixtures and raw payload builders for live chat tests."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import pytest

from chatfeed.features.livechat.client import ClientIdentity
from chatfeed.features.livechat.page_resolver import ResolvedPage
from chatfeed.features.livechat.token_codec import ChatMode, ContinuationToken, encode_token

# Token observed from a fetch response: mode record at offset 10, top chat.
SAMPLE_TOKEN_HEX = "d2 87 cc c8 03 12 1a 00 30 01 82 01 08 08 04 18 00 20 00 28 01 a8 01 01"
SAMPLE_TOKEN_BYTES = bytes.fromhex(SAMPLE_TOKEN_HEX)
SAMPLE_TOKEN = encode_token(SAMPLE_TOKEN_BYTES)

# First-page token without any mode record.
PAGE_TOKEN = encode_token(bytes.fromhex("0a 1c 2a 1a 0a 18 55 43 31 32 33 34 35 36 37 38"))

# SAMPLE_TOKEN with its mode byte set to all chat.
ALL_CHAT_TOKEN = encode_token(SAMPLE_TOKEN_BYTES[:14] + b"\x01" + SAMPLE_TOKEN_BYTES[15:])


def text_record(
    event_id: str,
    timestamp_usec: int,
    text: str = "hello",
    *,
    author: str = "viewer",
    channel_id: str = "UC_viewer",
    badges: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": event_id,
        "timestampUsec": str(timestamp_usec),
        "authorName": {"simpleText": author},
        "authorExternalChannelId": channel_id,
        "message": {"runs": [{"text": text}]},
    }
    if badges:
        body["authorBadges"] = [
            {"liveChatAuthorBadgeRenderer": {"tooltip": tooltip}} for tooltip in badges
        ]
    return {"liveChatTextMessageRenderer": body}


def add_action(record: Dict[str, Any]) -> Dict[str, Any]:
    return {"addChatItemAction": {"item": record}}


def chat_response(
    records: Iterable[Dict[str, Any]] = (),
    *,
    continuation: Optional[str] = SAMPLE_TOKEN,
    continuation_key: str = "invalidationContinuationData",
    timeout_ms: Optional[int] = 5000,
) -> Dict[str, Any]:
    """Build a fetch response body; ``continuation=None`` ends the stream."""

    live: Dict[str, Any] = {"actions": [add_action(record) for record in records]}
    if continuation is not None:
        data: Dict[str, Any] = {"continuation": continuation}
        if timeout_ms is not None:
            data["timeoutMs"] = timeout_ms
        live["continuations"] = [{continuation_key: data}]
    return {"continuationContents": {"liveChatContinuation": live}}


def resolved_page(
    continuation: str = SAMPLE_TOKEN,
    *,
    reload_tokens: Optional[Dict[ChatMode, str]] = None,
    video_id: str = "abcdefghijk",
) -> ResolvedPage:
    return ResolvedPage(
        identity=ClientIdentity(api_key="test-key", client_version="2.20240101.00.00", hl="en"),
        continuation=ContinuationToken(value=continuation),
        video_id=video_id,
        reload_tokens=dict(reload_tokens or {}),
    )


class FakePageResolver:
    """In-memory resolver keyed by URL and reload token."""

    def __init__(
        self,
        page: Optional[ResolvedPage] = None,
        reloads: Optional[Dict[str, ResolvedPage]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.page = page or resolved_page()
        self.reloads = dict(reloads or {})
        self.error = error
        self.resolved: list[str] = []
        self.reloaded: list[str] = []

    async def resolve(self, url, credential=None) -> ResolvedPage:
        self.resolved.append(url)
        if self.error is not None:
            raise self.error
        return self.page

    async def resolve_reload(self, reload_token, credential=None) -> ResolvedPage:
        self.reloaded.append(reload_token)
        return self.reloads[reload_token]


class ScriptedClient:
    """Stands in for ``LiveChatClient``; replays payloads or raises errors.

    Once the script is exhausted it keeps returning an empty page with the
    sample continuation so loops idle until closed.
    """

    def __init__(self, script: Iterable[Any] = ()) -> None:
        self.script = list(script)
        self.calls: list[ContinuationToken] = []
        self.identities: list[ClientIdentity] = []
        self.auth_seen: list[Any] = []

    async def fetch(self, identity, token, auth=None):
        self.calls.append(token)
        self.identities.append(identity)
        self.auth_seen.append(auth)
        if self.script:
            step = self.script.pop(0)
        else:
            step = chat_response(continuation=token.value, timeout_ms=10)
        if isinstance(step, Exception):
            raise step
        return step

    async def aclose(self) -> None:
        return None


class RecordingSink:
    def __init__(self) -> None:
        self.batches: list[list[Any]] = []

    @property
    def events(self) -> list[Any]:
        return [event for batch in self.batches for event in batch]

    async def emit(self, events) -> None:
        self.batches.append(list(events))


class FailingSink:
    async def emit(self, events) -> None:
        raise RuntimeError("disk full")


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
