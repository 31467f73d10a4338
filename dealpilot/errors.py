"""
dealpilot - Error Classes

Typed errors for the streaming copilot runtime.

Transport errors happen before streaming starts (network failure or a
non-success status). Protocol errors mean the response had nothing to read.
Stream errors interrupt a stream that already produced content. Cancellation
is never an error.

Each class declares its default message, code and status; classes that set
``fixed_retryable`` ignore a ``retryable`` argument.
"""

from typing import Any, Dict, Mapping, Optional


class DealPilotError(Exception):
    """
    Base exception for dealpilot.

    Attributes:
        message: Text suitable for showing to the user
        code: Stable identifier, e.g. "rate_limit_exceeded"
        status_code: HTTP status, or the closest equivalent
        request_id: Correlation id of the failed request, when known
        retryable: True if sending the same request again may succeed
        details: Extra data such as the raw response body
    """

    default_message = "Unexpected error"
    default_code = "unknown"
    default_status = 500
    fixed_retryable: Optional[bool] = None

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.status_code = self.default_status if status_code is None else status_code
        self.request_id = request_id
        self.retryable = retryable if self.fixed_retryable is None else self.fixed_retryable
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"code={self.code!r}, status_code={self.status_code})"
        )

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str = "",
        headers: Optional[Mapping[str, str]] = None
    ) -> "DealPilotError":
        """
        Map a non-success HTTP response to an error.

        The body goes into the message unchanged: "Request failed: 500 boom".
        """
        message = f"Request failed: {status_code} {body}".rstrip()
        details = {"body": body}

        if status_code == 401:
            return AuthenticationError(message, details=details)
        if status_code == 429:
            retry_after = _parse_retry_after((headers or {}).get("Retry-After"))
            return RateLimitError(message, retry_after=retry_after, details=details)
        return TransportError(
            message,
            status_code=status_code,
            retryable=status_code >= 500,
            details=details,
        )


def _parse_retry_after(value: Optional[str], default: int = 60) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class TransportError(DealPilotError):
    """The request failed before streaming began."""

    default_message = "Request failed"
    default_code = "transport_error"
    default_status = 502


class AuthenticationError(TransportError):
    """
    No usable credential: nobody is logged in, the session has no access
    token, or the service answered 401.
    """

    default_message = "You must be logged in to use AI features"
    default_code = "authentication_error"
    default_status = 401
    fixed_retryable = False


class RateLimitError(TransportError):
    """
    The service answered 429.

    Attributes:
        retry_after: Seconds the service asked us to wait
    """

    default_message = "Rate limit exceeded"
    default_code = "rate_limit_exceeded"
    default_status = 429
    fixed_retryable = True

    def __init__(self, message: Optional[str] = None, retry_after: int = 60, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TimeoutError(TransportError):
    """Opening the request took longer than the configured timeout."""

    default_message = "Request timed out"
    default_code = "timeout"
    default_status = 408
    fixed_retryable = True


class ConnectionError(TransportError):
    """The service could not be reached (network down, DNS, refused, TLS)."""

    default_message = "Failed to connect to API"
    default_code = "connection_error"
    default_status = 503
    fixed_retryable = True


class ProtocolError(DealPilotError):
    """The response had no readable body."""

    default_message = "Response has no body"
    default_code = "protocol_error"
    default_status = 502
    fixed_retryable = False


class StreamError(DealPilotError):
    """
    The stream broke after it started. Text already delivered stays delivered,
    so these are never retried.

    Attributes:
        partial_content: Text accumulated before the failure
    """

    default_message = "Stream interrupted"
    default_code = "stream_error"
    default_status = 500
    fixed_retryable = False

    def __init__(self, message: Optional[str] = None, partial_content: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.partial_content = partial_content


class InvalidConfigError(DealPilotError):
    """Client settings are missing or malformed."""

    default_message = "Invalid configuration"
    default_code = "invalid_config"
    default_status = 400
    fixed_retryable = False


def is_retryable_error(error: Any) -> bool:
    """True for dealpilot errors flagged retryable; anything else is final."""
    return isinstance(error, DealPilotError) and error.retryable
