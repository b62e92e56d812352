"""Structured JSON envelopes for service errors raised behind HTTP routes.

Every envelope has the shape ``{"error": <reason>, "message": <text>}`` plus an
optional ``context`` object built from the attributes the exception carries.
"""

from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from chatfeed.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    ServiceError,
    ValidationError,
)

# Attributes copied into ``context`` when set, keyed by the first matching class.
_CONTEXT_FIELDS: Tuple[Tuple[Type[ServiceError], Tuple[str, ...]], ...] = (
    (ValidationError, ("field",)),
    (NotFoundError, ("resource",)),
    (ConfigurationError, ("key",)),
    (ProviderError, ("provider", "status_code", "original_error")),
)

# Checked in order; subclasses must precede their bases.
_STATUS_CODES: Tuple[Tuple[Type[ServiceError], int], ...] = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (RateLimitError, 429),
    (ProviderError, 502),
)


def _context_for(exc: ServiceError) -> Dict[str, Any]:
    for cls, fields in _CONTEXT_FIELDS:
        if isinstance(exc, cls):
            context: Dict[str, Any] = {}
            for name in fields:
                value = getattr(exc, name, None)
                if value:
                    context[name] = str(value) if isinstance(value, BaseException) else value
            return context
    return {}


def format_service_error(exc: ServiceError) -> Dict[str, Any]:
    """Return the error envelope for any :class:`ServiceError`."""

    payload: Dict[str, Any] = {"error": exc.reason, "message": str(exc)}
    context = _context_for(exc)
    if context:
        payload["context"] = context
    return payload


def status_code_for(exc: ServiceError) -> int:
    """Map a service error onto an HTTP status code (500 when unmapped)."""

    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            return status
    return 500


__all__ = ["format_service_error", "status_code_for"]
