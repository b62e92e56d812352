"""Cookie credentials and per-request SAPISIDHASH signing."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Dict, Optional

from .exceptions import MissingCredentialError

logger = logging.getLogger(__name__)

REQUIRED_COOKIES = ("SID", "HSID", "SSID", "APISID", "SAPISID")
SIGNING_COOKIE = "SAPISID"


def parse_cookie_header(raw: str) -> Dict[str, str]:
    """Split a browser ``Cookie`` header into a name -> value mapping."""

    cookies: Dict[str, str] = {}
    for part in (raw or "").split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name:
            cookies[name.strip()] = value.strip()
    return cookies


@dataclass
class AuthCredential:
    """Session cookies supplied by a login flow or a cookie import.

    When ``raw_cookie_header`` is set it is sent verbatim and the named fields
    are only used for signing and completeness checks.
    """

    sid: str = ""
    hsid: str = ""
    ssid: str = ""
    apisid: str = ""
    sapisid: str = ""
    extra: Dict[str, str] = field(default_factory=dict)
    raw_cookie_header: Optional[str] = None
    acquired_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_cookie_header(cls, raw: str) -> "AuthCredential":
        """Build a credential from a cookie string copied out of a browser."""

        cookies = parse_cookie_header(raw)
        named = {name: cookies.pop(name, "") for name in REQUIRED_COOKIES}
        return cls(
            sid=named["SID"],
            hsid=named["HSID"],
            ssid=named["SSID"],
            apisid=named["APISID"],
            sapisid=named["SAPISID"],
            extra=cookies,
            raw_cookie_header=raw.strip(),
        )

    @property
    def signing_secret(self) -> str:
        return self.sapisid

    def is_complete(self) -> bool:
        """True when all five session cookies are present."""

        return all(self._named().values())

    def missing(self) -> list[str]:
        return [name for name, value in self._named().items() if not value]

    def cookie_header(self) -> str:
        """Return the ``Cookie`` header value."""

        if self.raw_cookie_header:
            return self.raw_cookie_header
        pairs = [f"{name}={value}" for name, value in self._named().items() if value]
        pairs.extend(f"{name}={value}" for name, value in self.extra.items())
        return "; ".join(pairs)

    def _named(self) -> Dict[str, str]:
        return {
            "SID": self.sid,
            "HSID": self.hsid,
            "SSID": self.ssid,
            "APISID": self.apisid,
            "SAPISID": self.sapisid,
        }

    def __repr__(self) -> str:
        present = [name for name, value in self._named().items() if value]
        return f"AuthCredential(present={present}, acquired_at={self.acquired_at.isoformat()})"


def sign(now_unix_seconds: int, secret: str, origin: str) -> str:
    """Return ``"{now}_{sha1_hex}"`` for the given timestamp, secret and origin."""

    if not secret:
        raise MissingCredentialError(f"{SIGNING_COOKIE} cookie is required to sign requests")
    digest = hashlib.sha1(f"{now_unix_seconds} {secret} {origin}".encode("utf-8")).hexdigest()
    return f"{now_unix_seconds}_{digest}"


class AuthContext:
    """Derives signed request headers from a long-lived credential.

    The credential is read-only after construction. A fresh signature is
    computed for every call to :meth:`headers`.
    """

    def __init__(
        self,
        credential: AuthCredential,
        origin: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credential = credential
        self._origin = origin
        self._clock = clock

    @property
    def credential(self) -> AuthCredential:
        return self._credential

    @property
    def origin(self) -> str:
        return self._origin

    def sign(self, now_unix_seconds: int, origin: str | None = None) -> str:
        return sign(now_unix_seconds, self._credential.signing_secret, origin or self._origin)

    def build_headers(self, signature: str) -> Dict[str, str]:
        """Attach the signature, the cookie set and the two origin headers."""

        return {
            "Authorization": f"SAPISIDHASH {signature}",
            "Cookie": self._credential.cookie_header(),
            "Origin": self._origin,
            "X-Origin": self._origin,
        }

    def headers(self) -> Dict[str, str]:
        """Sign against the current clock and return the header set."""

        signature = self.sign(int(self._clock()))
        return self.build_headers(signature)


__all__ = [
    "AuthContext",
    "AuthCredential",
    "REQUIRED_COOKIES",
    "parse_cookie_header",
    "sign",
]
