"""Continuation token codec.

Continuation tokens are opaque protobuf-like blobs that travel as URL-safe
base64 text. The only part this module understands is the nested mode record:

    offset  meaning
    0-1     marker ``82 01``
    2       declared record length (must be 8)
    3       sub-marker ``08``
    4       mode byte (``04`` top chat, ``01`` all chat)

Every other byte is treated as opaque and preserved bit-for-bit. Tokens minted
by the very first page scrape often lack the record entirely; callers must
fall back to a reload token in that case rather than guess.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Optional
from urllib.parse import unquote

from .exceptions import (
    MalformedTokenError,
    MarkerNotFoundError,
    TokenDecodeError,
    UnexpectedLengthError,
)

logger = logging.getLogger(__name__)

MODE_MARKER = b"\x82\x01"
MODE_RECORD_LENGTH = 8
MODE_SUB_MARKER = 0x08
# marker(2) + length(1) + sub-marker(1) + mode(1)
MODE_RECORD_SPAN = 5


class ChatMode(str, Enum):
    """Server-side filtering level of the chat stream."""

    TOP_CHAT = "top_chat"
    ALL_CHAT = "all_chat"

    @property
    def byte(self) -> int:
        return _MODE_TO_BYTE[self]

    @classmethod
    def from_byte(cls, value: int) -> Optional["ChatMode"]:
        return _BYTE_TO_MODE.get(value)


_MODE_TO_BYTE = {ChatMode.TOP_CHAT: 0x04, ChatMode.ALL_CHAT: 0x01}
_BYTE_TO_MODE = {value: mode for mode, value in _MODE_TO_BYTE.items()}


class TokenKind(str, Enum):
    """Main tokens hit the fetch endpoint; reload tokens only mint new mains."""

    MAIN = "main"
    RELOAD = "reload"


def _locate_mode_record(data: bytes) -> int:
    """Return the offset of the mode record marker.

    Raises ``MarkerNotFoundError`` when no marker followed by the sub-marker
    exists, and ``UnexpectedLengthError`` when the record declares a length
    this codec does not know.
    """

    start = 0
    while True:
        index = data.find(MODE_MARKER, start)
        if index < 0 or index + MODE_RECORD_SPAN > len(data):
            raise MarkerNotFoundError("Mode record marker not present in token")
        if data[index + 3] == MODE_SUB_MARKER:
            declared = data[index + 2]
            if declared != MODE_RECORD_LENGTH:
                raise UnexpectedLengthError(declared, MODE_RECORD_LENGTH)
            if index + 3 + declared > len(data):
                raise UnexpectedLengthError(len(data) - index - 3, MODE_RECORD_LENGTH)
            return index
        start = index + 1


def decode_mode(token_bytes: bytes) -> Optional[ChatMode]:
    """Return the embedded mode, or ``None`` when the token carries none."""

    try:
        index = _locate_mode_record(token_bytes)
    except TokenDecodeError as exc:
        logger.debug("No usable mode record in token: %s", exc)
        return None
    return ChatMode.from_byte(token_bytes[index + 4])


def set_mode(token_bytes: bytes, mode: ChatMode) -> bytes:
    """Return a copy of ``token_bytes`` with only the mode byte overwritten."""

    index = _locate_mode_record(token_bytes)
    current = token_bytes[index + 4]
    if ChatMode.from_byte(current) is None:
        raise TokenDecodeError(f"Unknown mode byte 0x{current:02x} at offset {index + 4}")

    buffer = bytearray(token_bytes)
    buffer[index + 4] = mode.byte
    logger.debug("Rewrote mode byte at offset %d: 0x%02x -> 0x%02x", index + 4, current, mode.byte)
    return bytes(buffer)


def decode_token(text: str) -> bytes:
    """Decode token text (URL-safe or standard base64, padded or not)."""

    cleaned = unquote((text or "").strip())
    if not cleaned:
        raise MalformedTokenError("Empty continuation token")
    padded = cleaned.rstrip("=") + "=" * (-len(cleaned.rstrip("=")) % 4)
    for altchars in (b"-_", b"+/"):
        try:
            return base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
    raise MalformedTokenError("Continuation token is not valid base64")


def encode_token(token_bytes: bytes) -> str:
    """Encode raw token bytes as URL-safe base64 without padding."""

    return base64.urlsafe_b64encode(token_bytes).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class ContinuationToken:
    """A continuation token as received from the page or a fetch response."""

    value: str
    kind: TokenKind = TokenKind.MAIN
    timeout_ms: Optional[int] = None
    from_response: bool = False
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @property
    def raw(self) -> bytes:
        return decode_token(self.value)

    @property
    def mode(self) -> Optional[ChatMode]:
        try:
            return decode_mode(self.raw)
        except MalformedTokenError:
            return None

    def with_mode(self, mode: ChatMode) -> "ContinuationToken":
        """Return a new main token carrying ``mode``.

        Raises a ``TokenDecodeError`` subclass when the record cannot be
        located; the caller is expected to fall back to a reload.
        """

        if self.kind is not TokenKind.MAIN:
            raise TokenDecodeError("Only main tokens carry a mode record")
        mutated = set_mode(self.raw, mode)
        return replace(self, value=encode_token(mutated), received_at=datetime.now(UTC))


__all__ = [
    "ChatMode",
    "ContinuationToken",
    "MODE_MARKER",
    "MODE_RECORD_LENGTH",
    "TokenKind",
    "decode_mode",
    "decode_token",
    "encode_token",
    "set_mode",
]
