"""Long-running polling session for one live chat.

Usage:
    session = PollingSession(
        session_id="abc",
        url="https://www.youtube.com/watch?v=...",
        config=get_livechat_config(),
        client=LiveChatClient(config),
        page_resolver=HttpPageResolver(config),
        sinks=[HubSink(hub)],
    )
    await session.start()
    await session.switch_mode(ChatMode.ALL_CHAT)
    await session.close()

One task per session runs fetch -> normalize -> deliver -> wait. There is never
more than one request in flight for a session, so batches reach the sinks in
the order they were fetched. Every wait is interruptible: ``close`` cancels the
task (including an in-flight request) and ``switch_mode`` wakes the
inter-poll wait.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Dict, Optional, Sequence

from chatfeed.core.exceptions import AuthenticationError, ServiceError

from .auth import AuthContext, AuthCredential
from .client import LiveChatClient
from .config import LiveChatConfig
from .exceptions import (
    InvalidTransitionError,
    NetworkError,
    PageResolutionError,
    RateLimitedError,
    ResponseParseError,
    TokenDecodeError,
)
from .normalizer import NormalizedBatch, ResponseNormalizer
from .page_resolver import PageResolver, ResolvedPage
from .sinks import EmitSink
from .state import BackoffPolicy, Session, SessionSignal, SessionState, poll_interval
from .token_codec import ChatMode, ContinuationToken, TokenKind

logger = logging.getLogger(__name__)


class PollingSession:
    """Drives one :class:`Session` through the polling state machine."""

    def __init__(
        self,
        *,
        session_id: str,
        config: LiveChatConfig,
        client: LiveChatClient,
        page_resolver: PageResolver,
        sinks: Sequence[EmitSink] = (),
        url: Optional[str] = None,
        page: Optional[ResolvedPage] = None,
        mode: Optional[ChatMode] = None,
        credential: Optional[AuthCredential] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ) -> None:
        if url is None and page is None:
            raise ValueError("Either url or page is required")
        self.session_id = session_id
        self.url = url
        self._config = config
        self._client = client
        self._resolver = page_resolver
        self._sinks = list(sinks)
        self._page = page
        self._credential = credential
        self._auth = self._build_auth(credential)
        self._normalizer = normalizer or ResponseNormalizer(config.dedup_capacity)
        self._policy = BackoffPolicy(
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
            rate_limit_floor=config.rate_limit_floor_seconds,
            max_retries=config.max_retries,
        )
        self._session = Session(mode=mode or ChatMode(config.default_mode))

        self._task: Optional[asyncio.Task[None]] = None
        self._wake = asyncio.Event()
        self._batch: Optional[NormalizedBatch] = None
        self._backoff_delay = 0.0
        self._last_main_token: Optional[ContinuationToken] = None
        self._pending_mode: Optional[ChatMode] = None
        self._mode_ack: Optional[asyncio.Future[ChatMode]] = None
        self.backoff_delays: list[float] = []

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def mode(self) -> ChatMode:
        return self._session.mode

    @property
    def retry_count(self) -> int:
        return self._session.retry_count

    @property
    def last_failure_reason(self) -> Optional[str]:
        return self._session.last_failure_reason

    @property
    def token(self) -> Optional[ContinuationToken]:
        return self._session.token

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Spawn the polling task."""

        if self.running:
            return
        if self._session.state is not SessionState.IDLE:
            raise InvalidTransitionError(self._session.state.value, SessionSignal.START.value)
        self._task = asyncio.create_task(self._run(), name=f"livechat-session-{self.session_id}")

    async def wait(self) -> None:
        """Wait until the polling task exits."""

        if self._task is not None:
            await asyncio.shield(self._task)

    async def switch_mode(self, mode: ChatMode) -> ChatMode:
        """Request a mode switch and wait for it to be applied.

        The switch is applied at the next delivery boundary. Raises the
        underlying error when neither the token rewrite nor the reload
        fallback could produce a token for ``mode``.
        """

        if self._session.is_terminal:
            raise InvalidTransitionError(self._session.state.value, SessionSignal.MODE_SWITCHED.value)
        if mode is self._session.mode and self._pending_mode is None:
            return mode

        if self._mode_ack is not None and not self._mode_ack.done():
            self._mode_ack.set_exception(ServiceError("Superseded by a newer mode switch request"))
        self._mode_ack = asyncio.get_running_loop().create_future()
        self._pending_mode = mode
        self._wake.set()
        logger.info("Session %s: mode switch to %s requested", self.session_id, mode.value)
        return await asyncio.shield(self._mode_ack)

    async def rearm(self, credential: Optional[AuthCredential] = None) -> None:
        """Restart a failed session, optionally with fresh credentials."""

        if self._session.state is not SessionState.FAILED:
            raise InvalidTransitionError(self._session.state.value, SessionSignal.REARM.value)
        if credential is not None:
            self._credential = credential
            self._auth = self._build_auth(credential)

        if self.url is not None:
            self._page = await self._resolver.resolve(self.url, self._credential)
            await self._align_mode()
        elif self._last_main_token is not None:
            self._session.token = self._last_main_token

        self._session.retry_count = 0
        self._session.last_failure_reason = None
        self._session.apply(SessionSignal.REARM)
        logger.info("Session %s re-armed", self.session_id)
        self._task = asyncio.create_task(self._loop(), name=f"livechat-session-{self.session_id}")

    async def close(self) -> None:
        """Cancel any in-flight request or wait and move to ``CLOSED``."""

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._session.state is not SessionState.CLOSED:
            self._session.apply(SessionSignal.CLOSE)
            logger.info("Session %s closed", self.session_id)
        self._reject_pending_mode()

    def status(self) -> Dict[str, Any]:
        """Snapshot for control surfaces."""

        session = self._session
        return {
            "session_id": self.session_id,
            "url": self.url,
            "video_id": self._page.video_id if self._page else None,
            "state": session.state.value,
            "mode": session.mode.value,
            "retry_count": session.retry_count,
            "last_success_at": session.last_success_at,
            "last_failure_reason": session.last_failure_reason,
            "events_emitted": session.events_emitted,
            "authenticated": self._auth is not None,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._prepare()
        except asyncio.CancelledError:
            raise
        except ServiceError as exc:
            self._session.last_failure_reason = exc.reason
            self._session.apply(SessionSignal.FATAL_FAILURE)
            logger.error("Session %s could not start: %s", self.session_id, exc)
            self._reject_pending_mode()
            return
        await self._loop()

    async def _prepare(self) -> None:
        if self._page is None:
            self._page = await self._resolver.resolve(self.url, self._credential)
        await self._align_mode()
        self._session.apply(SessionSignal.START)
        logger.info("Session %s started in %s mode", self.session_id, self._session.mode.value)

    async def _align_mode(self) -> None:
        """Point the session at the page's token, rewritten to the session mode."""

        token = self._page.continuation
        self._session.token = token
        self._last_main_token = token

        current = token.mode or ChatMode.TOP_CHAT
        wanted = self._session.mode
        if wanted is current:
            return
        if token.mode is None and self._page.reload_token_for(wanted) is None:
            logger.warning(
                "Session %s: no reload token for %s, polling in %s",
                self.session_id,
                wanted.value,
                current.value,
            )
            self._session.mode = current
            return

        token = await self._token_for_mode(wanted)
        self._session.token = token
        self._last_main_token = token

    async def _loop(self) -> None:
        try:
            while not self._session.is_terminal:
                state = self._session.state
                if state is SessionState.FETCHING:
                    await self._fetch_step()
                elif state is SessionState.DELIVERING:
                    await self._deliver_step()
                elif state is SessionState.BACKOFF:
                    await asyncio.sleep(self._backoff_delay)
                    self._session.apply(SessionSignal.BACKOFF_ELAPSED)
                else:
                    raise InvalidTransitionError(state.value, "poll")
        except asyncio.CancelledError:
            if self._session.state is not SessionState.CLOSED:
                self._session.apply(SessionSignal.CLOSE)
            raise
        finally:
            if self._session.is_terminal:
                self._reject_pending_mode()

    async def _fetch_step(self) -> None:
        token = self._session.token
        try:
            if token is None:
                raise PageResolutionError("Session has no continuation token")
            if token.kind is TokenKind.RELOAD:
                token = await self._mint_from_reload(token)
            payload = await self._client.fetch(self._page.identity, token, self._auth)
        except AuthenticationError as exc:
            self._fail(exc)
            return
        except RateLimitedError as exc:
            self._enter_backoff(exc, rate_limited=True, retry_after=exc.retry_after)
            return
        except (NetworkError, PageResolutionError) as exc:
            self._enter_backoff(exc)
            return
        except ServiceError as exc:
            self._fail(exc)
            return

        try:
            batch = self._normalizer.normalize_response(payload)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            error = ResponseParseError(f"Unreadable fetch response: {exc}", original_error=exc)
            self._enter_backoff(error)
            return
        self._session.retry_count = 0
        self._session.last_success_at = datetime.now(UTC)

        if batch.end_of_stream:
            if not await self._emit_or_fail(batch.events):
                return
            self._session.apply(SessionSignal.STREAM_ENDED)
            logger.info("Session %s: stream ended", self.session_id)
            return

        self._session.token = batch.continuation
        if batch.continuation.kind is TokenKind.MAIN:
            self._last_main_token = batch.continuation
        self._batch = batch
        self._session.apply(SessionSignal.FETCH_SUCCEEDED)

    async def _deliver_step(self) -> None:
        batch, self._batch = self._batch, None
        if batch is not None and not await self._emit_or_fail(batch.events):
            return

        delay = poll_interval(
            self._session.token,
            self._config.min_poll_interval_seconds,
            self._config.max_poll_interval_seconds,
        )
        await self._wait(delay)

        if self._pending_mode is not None:
            await self._apply_mode_switch()
        else:
            self._session.apply(SessionSignal.DELIVERED)

    async def _emit(self, events) -> None:
        if not events:
            return
        for sink in self._sinks:
            await sink.emit(events)
        self._session.events_emitted += len(events)

    async def _emit_or_fail(self, events) -> bool:
        """Emit ``events``; a raising sink fails the session and returns False."""

        try:
            await self._emit(events)
        except Exception:  # noqa: BLE001 - a broken sink ends the session
            logger.exception("Session %s: sink failed", self.session_id)
            self._session.last_failure_reason = "sink_error"
            self._session.apply(SessionSignal.FATAL_FAILURE)
            return False
        return True

    async def _apply_mode_switch(self) -> None:
        mode, self._pending_mode = self._pending_mode, None
        ack, self._mode_ack = self._mode_ack, None
        try:
            token = await self._token_for_mode(mode)
        except ServiceError as exc:
            logger.warning("Session %s: mode switch to %s failed: %s", self.session_id, mode.value, exc)
            if ack is not None and not ack.done():
                ack.set_exception(exc)
            self._session.apply(SessionSignal.DELIVERED)
            return

        self._session.token = token
        self._last_main_token = token
        self._session.mode = mode
        self._session.apply(SessionSignal.MODE_SWITCHED)
        logger.info("Session %s switched to %s", self.session_id, mode.value)
        if ack is not None and not ack.done():
            ack.set_result(mode)

    async def _token_for_mode(self, mode: ChatMode) -> ContinuationToken:
        if self._last_main_token is not None:
            try:
                return self._last_main_token.with_mode(mode)
            except TokenDecodeError as exc:
                logger.info(
                    "Session %s: token rewrite unavailable (%s), using reload",
                    self.session_id,
                    exc.reason,
                )

        reload = self._page.reload_token_for(mode) if self._page else None
        if reload is None:
            raise PageResolutionError(f"No reload token available for {mode.value}")
        page = await self._resolver.resolve_reload(reload, self._credential)
        self._adopt_page(page)
        return page.continuation

    async def _mint_from_reload(self, token: ContinuationToken) -> ContinuationToken:
        page = await self._resolver.resolve_reload(token.value, self._credential)
        self._adopt_page(page)
        self._session.token = page.continuation
        self._last_main_token = page.continuation
        logger.info("Session %s: refreshed main token from reload continuation", self.session_id)
        return page.continuation

    def _adopt_page(self, page: ResolvedPage) -> None:
        """Take the client identity and reload tokens from a freshly minted page."""

        self._page.identity = page.identity
        if page.reload_tokens:
            self._page.reload_tokens = page.reload_tokens

    def _enter_backoff(
        self,
        exc: ServiceError,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> None:
        self._session.retry_count += 1
        self._session.last_failure_reason = exc.reason
        if self._policy.exhausted(self._session.retry_count):
            logger.error(
                "Session %s: giving up after %s consecutive failures (%s)",
                self.session_id,
                self._session.retry_count,
                exc.reason,
            )
            self._session.apply(SessionSignal.FATAL_FAILURE)
            return

        delay = self._policy.delay(
            self._session.retry_count, rate_limited=rate_limited, retry_after=retry_after
        )
        self._backoff_delay = delay
        self.backoff_delays.append(delay)
        self._session.apply(SessionSignal.TRANSIENT_FAILURE)
        logger.warning(
            "Session %s: %s, retry %s/%s in %.1fs",
            self.session_id,
            exc.reason,
            self._session.retry_count,
            self._policy.max_retries,
            delay,
        )

    def _fail(self, exc: ServiceError) -> None:
        self._session.last_failure_reason = exc.reason
        self._session.apply(SessionSignal.FATAL_FAILURE)
        logger.error("Session %s failed: %s (%s)", self.session_id, exc.reason, exc)

    async def _wait(self, delay: float) -> None:
        if self._pending_mode is not None:
            return
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _reject_pending_mode(self) -> None:
        ack, self._mode_ack = self._mode_ack, None
        self._pending_mode = None
        if ack is not None and not ack.done():
            ack.set_exception(
                InvalidTransitionError(self._session.state.value, SessionSignal.MODE_SWITCHED.value)
            )

    def _build_auth(self, credential: Optional[AuthCredential]) -> Optional[AuthContext]:
        if credential is None:
            return None
        return AuthContext(credential, self._config.origin)


__all__ = ["PollingSession"]
