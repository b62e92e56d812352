"""Polling session state machine.

The transition table is a pure function of ``(state, signal)`` so it can be
tested without any event loop. :class:`PollingSession` owns the only mutable
:class:`Session` value and drives it through :meth:`Session.apply`.

    Idle -> Fetching -> (Delivering | Backoff) -> Fetching -> ... -> Closed
    Idle | Fetching | Delivering -> Failed     (terminal until re-armed)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .exceptions import InvalidTransitionError
from .token_codec import ChatMode, ContinuationToken


class SessionState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DELIVERING = "delivering"
    BACKOFF = "backoff"
    CLOSED = "closed"
    FAILED = "failed"


class SessionSignal(str, Enum):
    START = "start"
    FETCH_SUCCEEDED = "fetch_succeeded"
    STREAM_ENDED = "stream_ended"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"
    DELIVERED = "delivered"
    MODE_SWITCHED = "mode_switched"
    BACKOFF_ELAPSED = "backoff_elapsed"
    REARM = "rearm"
    CLOSE = "close"


_S = SessionState
_G = SessionSignal

_TRANSITIONS: dict[tuple[SessionState, SessionSignal], SessionState] = {
    (_S.IDLE, _G.START): _S.FETCHING,
    (_S.IDLE, _G.FATAL_FAILURE): _S.FAILED,
    (_S.FETCHING, _G.FETCH_SUCCEEDED): _S.DELIVERING,
    (_S.FETCHING, _G.STREAM_ENDED): _S.CLOSED,
    (_S.FETCHING, _G.TRANSIENT_FAILURE): _S.BACKOFF,
    (_S.FETCHING, _G.FATAL_FAILURE): _S.FAILED,
    (_S.DELIVERING, _G.DELIVERED): _S.FETCHING,
    (_S.DELIVERING, _G.MODE_SWITCHED): _S.FETCHING,
    (_S.DELIVERING, _G.FATAL_FAILURE): _S.FAILED,
    (_S.BACKOFF, _G.BACKOFF_ELAPSED): _S.FETCHING,
    (_S.FAILED, _G.REARM): _S.FETCHING,
}

TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.FAILED})


def transition(state: SessionState, signal: SessionSignal) -> SessionState:
    """Return the state reached from ``state`` on ``signal``.

    ``CLOSE`` is accepted from every state except ``CLOSED`` itself.
    """

    if signal is SessionSignal.CLOSE and state is not SessionState.CLOSED:
        return SessionState.CLOSED
    try:
        return _TRANSITIONS[(state, signal)]
    except KeyError:
        raise InvalidTransitionError(state.value, signal.value) from None


@dataclass(slots=True)
class Session:
    """Mutable polling state, owned by exactly one :class:`PollingSession`."""

    mode: ChatMode
    token: Optional[ContinuationToken] = None
    state: SessionState = SessionState.IDLE
    retry_count: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_reason: Optional[str] = None
    events_emitted: int = 0

    def apply(self, signal: SessionSignal) -> SessionState:
        self.state = transition(self.state, signal)
        return self.state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff bounded by ``max_delay`` with a rate-limit floor."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    rate_limit_floor: float = 10.0
    max_retries: int = 3

    def exhausted(self, retry_count: int) -> bool:
        return retry_count > self.max_retries

    def delay(
        self,
        retry_count: int,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""

        attempt = max(retry_count, 1)
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if rate_limited:
            ceiling = max(self.max_delay, self.rate_limit_floor)
            delay = min(max(delay, self.rate_limit_floor, retry_after or 0.0), ceiling)
        return delay


def poll_interval(token: Optional[ContinuationToken], minimum: float, maximum: float) -> float:
    """Clamp the server-suggested ``timeoutMs`` into ``[minimum, maximum]`` seconds."""

    if token is None or token.timeout_ms is None:
        return minimum
    return min(max(token.timeout_ms / 1000.0, minimum), maximum)


__all__ = [
    "BackoffPolicy",
    "Session",
    "SessionSignal",
    "SessionState",
    "TERMINAL_STATES",
    "poll_interval",
    "transition",
]
