"""HTTP client for the live chat continuation endpoint."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .auth import AuthContext
from .config import LiveChatConfig
from .exceptions import (
    AuthExpiredError,
    FetchTimeoutError,
    NetworkError,
    RateLimitedError,
    RequestRejectedError,
)
from .token_codec import ContinuationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientIdentity:
    """Values scraped from the page that identify the web client."""

    api_key: str
    client_version: str
    hl: Optional[str] = None
    gl: Optional[str] = None


def build_request_body(
    identity: ClientIdentity, token: ContinuationToken, client_name: str = "WEB"
) -> Dict[str, Any]:
    client: Dict[str, Any] = {
        "clientName": client_name,
        "clientVersion": identity.client_version,
    }
    if identity.hl:
        client["hl"] = identity.hl
    if identity.gl:
        client["gl"] = identity.gl
    return {"context": {"client": client}, "continuation": token.value}


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class LiveChatClient:
    """Posts continuation tokens and returns the decoded JSON body.

    Failures are classified into the live chat exception taxonomy so the
    polling loop can decide between backoff and surfacing the error.
    """

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
        )

    async def fetch(
        self,
        identity: ClientIdentity,
        token: ContinuationToken,
        auth: Optional[AuthContext] = None,
    ) -> Dict[str, Any]:
        """Fetch one page of chat actions for ``token``."""

        # Signing happens before any I/O so a missing secret never hits the network.
        headers = {"Content-Type": "application/json"}
        if auth is not None:
            headers.update(auth.headers())

        body = build_request_body(identity, token, self._config.client_name)
        try:
            response = await self._http.post(
                self._config.fetch_url,
                params={"key": identity.api_key, "prettyPrint": "false"},
                json=body,
                headers=headers,
                timeout=self._config.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError("Live chat request timed out", original_error=exc) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Live chat transport error: {exc}", original_error=exc) from exc

        self._raise_for_status(response, authenticated=auth is not None)

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise NetworkError(
                "Live chat response is not valid JSON",
                status_code=response.status_code,
                original_error=exc,
            ) from exc
        if not isinstance(payload, dict):
            raise NetworkError("Live chat response is not a JSON object", status_code=response.status_code)

        logger.debug("Fetched live chat page (%d bytes)", len(response.content))
        return payload

    def _raise_for_status(self, response: httpx.Response, *, authenticated: bool) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise RateLimitedError("Live chat rate limited", retry_after=_retry_after(response))
        if status >= 500:
            raise NetworkError(f"Live chat server error {status}", status_code=status)
        if status in (401, 403) and authenticated:
            raise AuthExpiredError(f"Credentials rejected with status {status}", status_code=status)
        logger.error("Live chat request rejected %s: %s", status, response.text[:200])
        raise RequestRejectedError(f"Live chat request rejected with status {status}", status_code=status)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


__all__ = ["ClientIdentity", "LiveChatClient", "build_request_body"]
