"""Scrape the live chat page for the values a polling session needs.

The page embeds the Innertube API key, the client version, a first main
continuation and, inside the view selector sub menu, one reload continuation
per chat mode (top chat first, all chat second).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol
from urllib.parse import parse_qs, quote, urlparse

import httpx

from .auth import AuthCredential
from .client import ClientIdentity
from .config import LiveChatConfig
from .exceptions import PageResolutionError
from .token_codec import ChatMode, ContinuationToken, TokenKind

logger = logging.getLogger(__name__)

_API_KEY_RE = re.compile(r"""['"]INNERTUBE_API_KEY['"]:\s*['"](.+?)['"]""")
_CLIENT_VERSION_RE = re.compile(r"""['"]INNERTUBE_CLIENT_VERSION['"]:\s*['"](.+?)['"]""")
_CONTINUATION_RE = re.compile(r"""['"]continuation['"]:\s*['"](.+?)['"]""")
_REPLAY_RE = re.compile(r"""['"]isReplay['"]:\s*true""")
_HL_RE = re.compile(r"""['"]hl['"]:\s*['"](.+?)['"]""")
_GL_RE = re.compile(r"""['"]gl['"]:\s*['"](.+?)['"]""")
_CANONICAL_RE = re.compile(
    r"""<link rel="canonical" href="https://www\.youtube\.com/watch\?v=(.+?)">"""
)
_RELOAD_RE = re.compile(
    r""""reloadContinuationData"\s*:\s*\{\s*"continuation"\s*:\s*"(.+?)\""""
)
_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

# Sub menu order in the view selector.
_SUB_MENU_MODES = (ChatMode.TOP_CHAT, ChatMode.ALL_CHAT)


@dataclass
class ResolvedPage:
    """Everything a session needs to start polling."""

    identity: ClientIdentity
    continuation: ContinuationToken
    video_id: Optional[str] = None
    is_replay: bool = False
    reload_tokens: Dict[ChatMode, str] = field(default_factory=dict)

    def reload_token_for(self, mode: ChatMode) -> Optional[str]:
        return self.reload_tokens.get(mode)


class PageResolver(Protocol):
    """Seam between a polling session and whatever mints page tokens."""

    async def resolve(
        self, url: str, credential: Optional[AuthCredential] = None
    ) -> ResolvedPage: ...

    async def resolve_reload(
        self, reload_token: str, credential: Optional[AuthCredential] = None
    ) -> ResolvedPage: ...


def _first(pattern: re.Pattern[str], html: str) -> Optional[str]:
    match = pattern.search(html)
    return match.group(1) if match else None


def extract_video_id(url: str) -> Optional[str]:
    """Pull the video id out of watch, short, live or live_chat URLs."""

    if _VIDEO_ID_RE.match(url or ""):
        return url
    parsed = urlparse(url)
    query_id = parse_qs(parsed.query).get("v", [None])[0]
    if query_id:
        return query_id
    parts = [part for part in parsed.path.split("/") if part]
    if parsed.netloc.endswith("youtu.be") and parts:
        return parts[0]
    if len(parts) >= 2 and parts[0] in ("live", "shorts", "embed"):
        return parts[1]
    return None


def extract_reload_tokens(html: str) -> Dict[ChatMode, str]:
    """Return the per-mode reload continuations from the view selector."""

    start = html.find("subMenuItems")
    if start < 0:
        return {}
    tokens = _RELOAD_RE.findall(html, start)
    return {mode: token for mode, token in zip(_SUB_MENU_MODES, tokens)}


def parse_page(html: str) -> ResolvedPage:
    """Extract a :class:`ResolvedPage` from live chat page HTML."""

    api_key = _first(_API_KEY_RE, html)
    if not api_key:
        raise PageResolutionError("INNERTUBE_API_KEY not found in page")
    client_version = _first(_CLIENT_VERSION_RE, html)
    if not client_version:
        raise PageResolutionError("INNERTUBE_CLIENT_VERSION not found in page")
    continuation = _first(_CONTINUATION_RE, html)
    if not continuation:
        raise PageResolutionError("No continuation found in page; chat may be disabled")

    return ResolvedPage(
        identity=ClientIdentity(
            api_key=api_key,
            client_version=client_version,
            hl=_first(_HL_RE, html),
            gl=_first(_GL_RE, html),
        ),
        continuation=ContinuationToken(value=continuation, kind=TokenKind.MAIN),
        video_id=_first(_CANONICAL_RE, html),
        is_replay=bool(_REPLAY_RE.search(html)),
        reload_tokens=extract_reload_tokens(html),
    )


class HttpPageResolver:
    """Fetches live chat pages over HTTP with ``httpx``."""

    def __init__(
        self,
        config: LiveChatConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=config.request_timeout_seconds,
            headers={"User-Agent": config.user_agent},
            follow_redirects=True,
        )

    def page_url_for(self, url: str) -> str:
        video_id = extract_video_id(url)
        if video_id is None:
            return url
        return f"{self._config.live_chat_page_url}?v={video_id}"

    async def resolve(
        self, url: str, credential: Optional[AuthCredential] = None
    ) -> ResolvedPage:
        page_url = self.page_url_for(url)
        html = await self._get(page_url, credential)
        page = parse_page(html)
        if page.video_id is None:
            page.video_id = extract_video_id(url)
        logger.info(
            "Resolved live chat page video=%s replay=%s reload_modes=%s",
            page.video_id,
            page.is_replay,
            [mode.value for mode in page.reload_tokens],
        )
        return page

    async def resolve_reload(
        self, reload_token: str, credential: Optional[AuthCredential] = None
    ) -> ResolvedPage:
        page_url = f"{self._config.live_chat_page_url}?continuation={quote(reload_token, safe='')}"
        html = await self._get(page_url, credential)
        page = parse_page(html)
        logger.debug("Minted main continuation from reload token")
        return page

    async def _get(self, url: str, credential: Optional[AuthCredential]) -> str:
        headers = {}
        if credential is not None:
            headers["Cookie"] = credential.cookie_header()
        try:
            response = await self._http.get(
                url, headers=headers, timeout=self._config.request_timeout_seconds
            )
        except httpx.HTTPError as exc:
            raise PageResolutionError(f"Page fetch failed: {exc}", original_error=exc) from exc
        if response.status_code >= 400:
            logger.error("Page fetch failed with status %s", response.status_code)
            raise PageResolutionError(f"Page fetch failed with status {response.status_code}")
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


__all__ = [
    "HttpPageResolver",
    "PageResolver",
    "ResolvedPage",
    "extract_reload_tokens",
    "extract_video_id",
    "parse_page",
]
