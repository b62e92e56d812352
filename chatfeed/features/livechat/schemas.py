"""Pydantic schemas for the live chat control routes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .auth import AuthCredential
from .token_codec import ChatMode


class CredentialPayload(BaseModel):
    """Session cookies; either ``cookies`` or the named values."""

    cookies: Optional[str] = Field(default=None, description="Raw browser Cookie header")
    sid: str = ""
    hsid: str = ""
    ssid: str = ""
    apisid: str = ""
    sapisid: str = ""

    def to_credential(self) -> AuthCredential:
        if self.cookies:
            return AuthCredential.from_cookie_header(self.cookies)
        return AuthCredential(
            sid=self.sid,
            hsid=self.hsid,
            ssid=self.ssid,
            apisid=self.apisid,
            sapisid=self.sapisid,
        )

    def __repr__(self) -> str:
        return "CredentialPayload(<redacted>)"


class StartSessionRequest(BaseModel):
    url: str
    mode: Optional[ChatMode] = None
    credential: Optional[CredentialPayload] = None


class SwitchModeRequest(BaseModel):
    mode: ChatMode


class RearmRequest(BaseModel):
    credential: Optional[CredentialPayload] = None


class SessionStatus(BaseModel):
    session_id: str
    url: Optional[str] = None
    video_id: Optional[str] = None
    state: str
    mode: ChatMode
    retry_count: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_reason: Optional[str] = None
    events_emitted: int = 0
    authenticated: bool = False


class ModeSwitchResponse(BaseModel):
    session_id: str
    mode: ChatMode
    applied: bool


__all__ = [
    "CredentialPayload",
    "ModeSwitchResponse",
    "RearmRequest",
    "SessionStatus",
    "StartSessionRequest",
    "SwitchModeRequest",
]
