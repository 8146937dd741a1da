"""Custom exceptions for http-trace."""

from typing import Any


class HTTPTraceError(Exception):
    """Base exception for http-trace errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RequestConstructionError(HTTPTraceError):
    """The request method or URL is invalid; no exchange is attempted."""


class HeaderParseError(HTTPTraceError):
    """A raw header entry is not of the form ``Name: Value``."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(
            message=f"invalid header {raw!r}: {reason}",
            details={"header": raw},
        )
        self.raw = raw


class TracerStateError(HTTPTraceError):
    """Operation is not valid in the tracer's current state."""


class TransportError(HTTPTraceError):
    """The exchange failed before a response was received.

    Covers DNS failures, refused connections, TLS failures and timeouts.
    """


class RenderError(HTTPTraceError):
    """The report could not be formatted or written."""


class ConfigurationError(HTTPTraceError):
    """Raised when configuration loading or validation fails."""
