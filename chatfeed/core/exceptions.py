"""Custom exception hierarchy for chatfeed.

This module defines the typed base exceptions shared by every feature so that
callers can classify failures without inspecting message strings.

Exception Handling Flow:
    1. Feature code raises a typed exception (see features/livechat/exceptions.py)
    2. The polling loop or an HTTP route catches it
    3. The ``reason`` attribute becomes the classified failure string
    4. Routes convert it into the structured error envelope (core/http/errors.py)
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base exception for all service layer errors."""

    reason = "service_error"

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    reason = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a requested resource cannot be located."""

    reason = "not_found"

    def __init__(self, message: str, resource: str | None = None):
        self.resource = resource
        super().__init__(message)


class ProviderError(ServiceError):
    """Raised when the upstream chat service fails."""

    reason = "provider_error"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class ConfigurationError(ServiceError):
    """Raised when configuration is invalid or missing."""

    reason = "configuration_error"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


class StreamingError(ServiceError):
    """Raised when a streaming or fan-out operation fails."""

    reason = "streaming_error"

    def __init__(self, message: str, stage: str | None = None):
        self.stage = stage
        super().__init__(message)


class ClientDisconnectedError(StreamingError):
    """Raised when a broadcast client is no longer registered."""

    reason = "client_disconnected"

    def __init__(self, message: str, client_id: int | None = None):
        self.client_id = client_id
        super().__init__(message, stage="broadcast")


class AuthenticationError(ServiceError):
    """Raised when authentication material is missing or rejected."""

    reason = "authentication_error"


class RateLimitError(ProviderError):
    """Raised when the upstream service rate limit is exceeded."""

    reason = "rate_limited"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


__all__ = [
    "AuthenticationError",
    "ClientDisconnectedError",
    "ConfigurationError",
    "NotFoundError",
    "ProviderError",
    "RateLimitError",
    "ServiceError",
    "StreamingError",
    "ValidationError",
]
