"""Exceptions raised by the live chat ingestion engine."""

from __future__ import annotations

from chatfeed.core.exceptions import (
    AuthenticationError,
    ProviderError,
    RateLimitError,
    ServiceError,
    StreamingError,
    ValidationError,
)

PROVIDER = "youtube"


class TokenDecodeError(ServiceError):
    """The continuation token does not have the expected binary layout."""

    reason = "token_decode_error"


class MarkerNotFoundError(TokenDecodeError):
    """The mode record marker is absent from the token."""

    reason = "marker_not_found"


class UnexpectedLengthError(TokenDecodeError):
    """The mode record declares a length other than the one this codec knows."""

    reason = "unexpected_length"

    def __init__(self, declared: int, expected: int):
        self.declared = declared
        self.expected = expected
        super().__init__(
            f"Mode record declares length {declared}, expected {expected}"
        )


class MalformedTokenError(TokenDecodeError):
    """The token text is not decodable base64."""

    reason = "malformed_token"


class MissingCredentialError(AuthenticationError):
    """The signing secret is absent; no request may be sent."""

    reason = "missing_credential"


class AuthExpiredError(AuthenticationError):
    """The upstream service rejected the supplied credentials."""

    reason = "auth_expired"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkError(ProviderError):
    """A transient transport or server-side failure."""

    reason = "network_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider=PROVIDER, original_error=original_error)


class FetchTimeoutError(NetworkError):
    reason = "timeout"


class RateLimitedError(RateLimitError):
    """HTTP 429 from the upstream service."""

    reason = "rate_limited"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, retry_after=retry_after)
        self.provider = PROVIDER
        self.status_code = 429


class RequestRejectedError(ProviderError):
    """A non-retryable 4xx that is not an authentication rejection."""

    reason = "request_rejected"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, provider=PROVIDER)


class RecordParseError(ValidationError):
    """A single raw record could not be normalized."""

    reason = "record_parse_error"

    def __init__(self, message: str, renderer: str | None = None):
        self.renderer = renderer
        super().__init__(message, field=renderer)


class ResponseParseError(ProviderError):
    """A fetch response body did not have the expected structure."""

    reason = "response_parse_error"

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message, provider=PROVIDER, original_error=original_error)


class InvalidTransitionError(StreamingError):
    """A polling state machine edge that does not exist was requested."""

    reason = "invalid_transition"

    def __init__(self, state: str, signal: str):
        self.state = state
        self.signal = signal
        super().__init__(f"No transition from {state} on {signal}", stage="session")


class PageResolutionError(ProviderError):
    """The chat page could not be scraped for a usable continuation."""

    reason = "page_resolution_error"

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message, provider=PROVIDER, original_error=original_error)


__all__ = [
    "AuthExpiredError",
    "FetchTimeoutError",
    "InvalidTransitionError",
    "MalformedTokenError",
    "MarkerNotFoundError",
    "MissingCredentialError",
    "NetworkError",
    "PageResolutionError",
    "RateLimitedError",
    "RecordParseError",
    "RequestRejectedError",
    "ResponseParseError",
    "TokenDecodeError",
    "UnexpectedLengthError",
]
