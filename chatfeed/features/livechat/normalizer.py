"""Map heterogeneous renderer payloads onto :class:`ChatEvent`.

The upstream response wraps every chat item in a renderer-tagged object:

    {"addChatItemAction": {"item": {"liveChatTextMessageRenderer": {...}}}}

Dispatch is an explicit table keyed by the renderer name. Renderers that are
known but carry nothing worth emitting are dropped quietly; anything not in
either table is logged at DEBUG and dropped, because the upstream surface
gains new renderer kinds over time.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from .exceptions import RecordParseError
from .models import ChatEvent, EmojiRun, EventKind, TextRun, flatten_runs
from .token_codec import ContinuationToken, TokenKind

logger = logging.getLogger(__name__)

MEMBER_LABELS = ("Member", "メンバー")
MODERATOR_LABELS = ("Moderator", "モデレーター")
VERIFIED_LABELS = ("Verified", "認証")

# Known renderers with no event counterpart.
IGNORED_RENDERERS = frozenset(
    {
        "liveChatPlaceholderItemRenderer",
        "liveChatTickerPaidMessageItemRenderer",
        "liveChatTickerPaidStickerItemRenderer",
        "liveChatTickerSponsorItemRenderer",
        "liveChatModeChangeMessageRenderer",
    }
)

# Continuation payload keys in order of preference.
_CONTINUATION_KEYS = (
    ("invalidationContinuationData", TokenKind.MAIN),
    ("timedContinuationData", TokenKind.MAIN),
    ("reloadContinuationData", TokenKind.RELOAD),
)


@dataclass
class NormalizedBatch:
    """Result of normalizing one fetch response."""

    events: list[ChatEvent] = field(default_factory=list)
    continuation: Optional[ContinuationToken] = None
    skipped: int = 0

    @property
    def end_of_stream(self) -> bool:
        return self.continuation is None


def _text_of(value: Any) -> str:
    return flatten_runs(parse_runs(value))


def parse_runs(value: Any) -> list[TextRun | EmojiRun]:
    """Normalize a scalar string, ``simpleText`` or ``runs`` payload."""

    if value is None:
        return []
    if isinstance(value, str):
        return [TextRun(text=value)] if value else []
    if not isinstance(value, dict):
        raise RecordParseError(f"Unsupported text payload type {type(value).__name__}")
    if "simpleText" in value:
        text = value.get("simpleText") or ""
        return [TextRun(text=text)] if text else []

    runs: list[TextRun | EmojiRun] = []
    for raw in value.get("runs") or []:
        if "text" in raw:
            runs.append(TextRun(text=raw.get("text") or ""))
        elif "emoji" in raw:
            runs.append(_parse_emoji(raw["emoji"]))
        else:
            logger.debug("Skipping run with unknown shape: %s", sorted(raw))
    return runs


def _parse_emoji(emoji: Dict[str, Any]) -> EmojiRun:
    emoji_id = emoji.get("emojiId") or ""
    if not emoji_id:
        raise RecordParseError("Emoji run without emojiId")
    thumbnails = (emoji.get("image") or {}).get("thumbnails") or []
    return EmojiRun(
        emoji_id=emoji_id,
        shortcuts=list(emoji.get("shortcuts") or []),
        is_custom=bool(emoji.get("isCustomEmoji", False)),
        image_url=thumbnails[-1].get("url") if thumbnails else None,
    )


def extract_badges(renderer: Dict[str, Any]) -> tuple[list[str], bool, bool, bool]:
    """Return ``(tooltips, is_member, is_moderator, is_verified)``."""

    badges: list[str] = []
    is_member = is_moderator = is_verified = False
    for entry in renderer.get("authorBadges") or []:
        badge = entry.get("liveChatAuthorBadgeRenderer") or {}
        tooltip = badge.get("tooltip") or ""
        label = (
            ((badge.get("accessibility") or {}).get("accessibilityData") or {}).get("label") or ""
        )
        if tooltip:
            badges.append(tooltip)
        haystack = f"{tooltip} {label}"
        is_member = is_member or any(word in haystack for word in MEMBER_LABELS)
        is_moderator = is_moderator or any(word in haystack for word in MODERATOR_LABELS)
        is_verified = is_verified or any(word in haystack for word in VERIFIED_LABELS)
    return badges, is_member, is_moderator, is_verified


def _timeout_ms(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable timeoutMs %r", value)
        return None


def extract_continuation(payload: Dict[str, Any]) -> Optional[ContinuationToken]:
    """Pick the next token from a fetch response, or ``None`` at end of stream."""

    live = (payload.get("continuationContents") or {}).get("liveChatContinuation") or {}
    continuations = live.get("continuations") or []
    if not continuations:
        return None
    first = continuations[0]
    if not isinstance(first, dict):
        logger.debug("Ignoring continuation entry of type %s", type(first).__name__)
        return None
    for key, kind in _CONTINUATION_KEYS:
        data = first.get(key)
        if isinstance(data, dict) and data.get("continuation"):
            return ContinuationToken(
                value=data["continuation"],
                kind=kind,
                timeout_ms=_timeout_ms(data.get("timeoutMs")),
                from_response=True,
            )
    logger.debug("Unrecognized continuation entry: %s", sorted(first))
    return None


def extract_items(payload: Dict[str, Any]) -> list[Dict[str, Any]]:
    """Return the renderer-tagged items of every add-item action."""

    live = (payload.get("continuationContents") or {}).get("liveChatContinuation") or {}
    items: list[Dict[str, Any]] = []
    for action in _flatten_actions(live.get("actions") or []):
        add = action.get("addChatItemAction")
        if add is None:
            logger.debug("Ignoring action %s", next(iter(action), "?"))
            continue
        item = add.get("item") if isinstance(add, dict) else None
        if item:
            items.append(item)
    return items


def _flatten_actions(actions: Iterable[Any]) -> Iterable[Dict[str, Any]]:
    for action in actions:
        if not isinstance(action, dict):
            logger.debug("Ignoring action of type %s", type(action).__name__)
            continue
        replay = action.get("replayChatItemAction")
        if isinstance(replay, dict):
            yield from _flatten_actions(replay.get("actions") or [])
        else:
            yield action


class ResponseNormalizer:
    """Turns raw renderer records into ordered, de-duplicated events.

    The normalizer remembers the last ``dedup_capacity`` ids it emitted and
    keeps a running per-channel comment count. One instance belongs to one
    polling session.
    """

    def __init__(self, dedup_capacity: int = 5000) -> None:
        self._capacity = dedup_capacity
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._comment_counts: Dict[str, int] = {}
        self._parsers: Dict[str, Callable[[Dict[str, Any]], ChatEvent]] = {
            "liveChatTextMessageRenderer": self._parse_text,
            "liveChatPaidMessageRenderer": self._parse_paid_message,
            "liveChatPaidStickerRenderer": self._parse_paid_sticker,
            "liveChatMembershipItemRenderer": self._parse_membership,
            "liveChatViewerEngagementMessageRenderer": self._parse_engagement,
            "liveChatSponsorshipsGiftPurchaseAnnouncementRenderer": self._parse_gift_purchase,
            "liveChatSponsorshipsGiftRedemptionAnnouncementRenderer": self._parse_gift_redemption,
        }

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def has_seen(self, event_id: str) -> bool:
        return event_id in self._seen

    def normalize_response(self, payload: Dict[str, Any]) -> NormalizedBatch:
        """Normalize a whole fetch response body."""

        batch = self.normalize(extract_items(payload))
        batch.continuation = extract_continuation(payload)
        return batch

    def normalize(self, records: Iterable[Dict[str, Any]]) -> NormalizedBatch:
        """Normalize renderer records into a batch sorted by ``timestamp_usec``."""

        batch = NormalizedBatch()
        for record in records:
            try:
                event = self.normalize_record(record)
            except RecordParseError as exc:
                batch.skipped += 1
                logger.warning("Skipping %s record: %s", exc.renderer or "unknown", exc)
                continue
            if event is None:
                continue
            if event.id in self._seen:
                logger.debug("Dropping duplicate event %s", event.id)
                continue
            self._remember(event.id)
            batch.events.append(event)

        batch.events.sort(key=lambda event: event.timestamp_usec)
        for event in batch.events:
            event.comment_count = self._count(event)
        return batch

    def normalize_record(self, record: Dict[str, Any]) -> Optional[ChatEvent]:
        """Normalize one renderer-tagged record; ``None`` means dropped."""

        if not isinstance(record, dict) or not record:
            raise RecordParseError("Record is not a renderer-tagged object")
        renderer_name, body = next(iter(record.items()))
        parser = self._parsers.get(renderer_name)
        if parser is None:
            if renderer_name not in IGNORED_RENDERERS:
                logger.debug("Dropping unknown renderer %s", renderer_name)
            return None
        if not isinstance(body, dict):
            raise RecordParseError("Renderer body is not an object", renderer=renderer_name)
        try:
            return parser(body)
        except RecordParseError as exc:
            exc.renderer = exc.renderer or renderer_name
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise RecordParseError(
                f"Malformed {renderer_name}: {exc!r}", renderer=renderer_name
            ) from exc

    def _remember(self, event_id: str) -> None:
        self._seen[event_id] = None
        while len(self._seen) > self._capacity:
            self._seen.popitem(last=False)

    def _count(self, event: ChatEvent) -> Optional[int]:
        if not event.channel_id:
            return None
        count = self._comment_counts.get(event.channel_id, 0) + 1
        self._comment_counts[event.channel_id] = count
        return count

    def _base(self, body: Dict[str, Any], kind: EventKind, runs: list) -> ChatEvent:
        event_id = body.get("id")
        if not event_id:
            raise RecordParseError("Record without id")
        timestamp = body.get("timestampUsec")
        if timestamp is None:
            raise RecordParseError("Record without timestampUsec")
        badges, is_member, is_moderator, is_verified = extract_badges(body)
        return ChatEvent(
            id=event_id,
            timestamp_usec=int(timestamp),
            author=_text_of(body.get("authorName")),
            channel_id=body.get("authorExternalChannelId") or "",
            kind=kind,
            runs=runs,
            content=flatten_runs(runs),
            badges=badges,
            is_member=is_member,
            is_moderator=is_moderator,
            is_verified=is_verified,
        )

    def _parse_text(self, body: Dict[str, Any]) -> ChatEvent:
        return self._base(body, EventKind.TEXT, parse_runs(body.get("message")))

    def _parse_paid_message(self, body: Dict[str, Any]) -> ChatEvent:
        event = self._base(body, EventKind.PAID_CONTRIBUTION, parse_runs(body.get("message")))
        event.amount = _text_of(body["purchaseAmountText"])
        return event

    def _parse_paid_sticker(self, body: Dict[str, Any]) -> ChatEvent:
        event = self._base(body, EventKind.PAID_STICKER, [])
        event.amount = _text_of(body["purchaseAmountText"])
        return event

    def _parse_membership(self, body: Dict[str, Any]) -> ChatEvent:
        runs = parse_runs(body.get("message"))
        primary = body.get("headerPrimaryText")
        if primary is not None:
            event = self._base(body, EventKind.MEMBERSHIP_MILESTONE, runs)
            event.months_text = _text_of(primary)
        else:
            event = self._base(body, EventKind.MEMBERSHIP_WELCOME, runs)
        event.header = _text_of(body.get("headerSubtext")) or None
        event.is_member = True
        return event

    def _parse_engagement(self, body: Dict[str, Any]) -> ChatEvent:
        return self._base(body, EventKind.SYSTEM, parse_runs(body.get("message")))

    def _parse_gift_purchase(self, body: Dict[str, Any]) -> ChatEvent:
        header = body.get("header") or {}
        header_renderer = header.get("liveChatSponsorshipsHeaderRenderer") or header
        runs = parse_runs(header_renderer.get("primaryText") or header_renderer)
        event = self._base({**header_renderer, **body}, EventKind.SYSTEM, runs)
        event.header = event.content or None
        event.is_member = True
        return event

    def _parse_gift_redemption(self, body: Dict[str, Any]) -> ChatEvent:
        return self._base(body, EventKind.SYSTEM, parse_runs(body.get("message")))


__all__ = [
    "IGNORED_RENDERERS",
    "NormalizedBatch",
    "ResponseNormalizer",
    "extract_badges",
    "extract_continuation",
    "extract_items",
    "parse_runs",
]
