"""Live chat ingestion: token codec, signing, polling and normalization."""

from .auth import AuthContext, AuthCredential
from .models import ChatEvent, EmojiRun, EventKind, TextRun
from .normalizer import ResponseNormalizer
from .session import PollingSession
from .service import LiveChatService
from .state import SessionState
from .token_codec import ChatMode, ContinuationToken, TokenKind, decode_mode, set_mode

__all__ = [
    "AuthContext",
    "AuthCredential",
    "ChatEvent",
    "ChatMode",
    "ContinuationToken",
    "EmojiRun",
    "EventKind",
    "LiveChatService",
    "PollingSession",
    "ResponseNormalizer",
    "SessionState",
    "TextRun",
    "TokenKind",
    "decode_mode",
    "set_mode",
]
