"""Canonical chat event model."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Closed set of event variants the normalizer can produce."""

    TEXT = "Text"
    PAID_CONTRIBUTION = "PaidContribution"
    PAID_STICKER = "PaidSticker"
    MEMBERSHIP_MILESTONE = "MembershipMilestone"
    MEMBERSHIP_WELCOME = "MembershipWelcome"
    SYSTEM = "System"


class TextRun(BaseModel):
    type: Literal["text"] = "text"
    text: str

    def placeholder(self) -> str:
        return self.text


class EmojiRun(BaseModel):
    type: Literal["emoji"] = "emoji"
    emoji_id: str
    shortcuts: list[str] = Field(default_factory=list)
    is_custom: bool = False
    image_url: Optional[str] = None

    def placeholder(self) -> str:
        """Plain-text stand-in used in the flattened ``content``; shortcuts stay on the run."""

        return f":{self.emoji_id}:"


Run = Annotated[Union[TextRun, EmojiRun], Field(discriminator="type")]


class ChatEvent(BaseModel):
    """One de-duplicated, time-ordered chat occurrence.

    ``amount`` is set for paid contributions and stickers, ``months_text`` for
    membership milestones; both are ``None`` for every other kind. ``header``
    carries the membership or gift banner text, which is not part of ``runs``.
    """

    id: str
    timestamp_usec: int
    author: str = ""
    channel_id: str = ""
    kind: EventKind
    amount: Optional[str] = None
    months_text: Optional[str] = None
    header: Optional[str] = None
    runs: list[Run] = Field(default_factory=list)
    content: str = ""
    badges: list[str] = Field(default_factory=list)
    is_member: bool = False
    is_moderator: bool = False
    is_verified: bool = False
    comment_count: Optional[int] = None


def flatten_runs(runs: list[TextRun | EmojiRun]) -> str:
    return "".join(run.placeholder() for run in runs)


__all__ = ["ChatEvent", "EmojiRun", "EventKind", "Run", "TextRun", "flatten_runs"]
