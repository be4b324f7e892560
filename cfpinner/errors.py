"""Exception hierarchy for cfpinner.

Only setup failures propagate out of a scan. Per-address network failures
are captured as :class:`TransportError` and folded into the outcome data.
"""

from __future__ import annotations

import ssl
from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SSL_ERROR = "SSL_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_CATEGORY_REASONS = {
    ErrorCategory.TIMEOUT: "Timeout was reached",
    ErrorCategory.CONNECTION_ERROR: "Couldn't connect to server",
    ErrorCategory.SSL_ERROR: "SSL connect error",
    ErrorCategory.PROTOCOL_ERROR: "Malformed response",
    ErrorCategory.UNKNOWN_ERROR: "Transport error",
}


class CFPinnerError(Exception):
    """Base class for all cfpinner errors."""


class ParseError(CFPinnerError, ValueError):
    """An address or address-block declaration could not be parsed."""

    def __init__(self, declaration: str, reason: str):
        self.declaration = declaration
        self.reason = reason
        super().__init__(f"Invalid address block {declaration!r}: {reason}")


class ConfigurationError(CFPinnerError):
    """A scan cannot start (no targets, missing input files, ...)."""


class TransportError(CFPinnerError):
    """A single probe failed before any HTTP status was received."""

    def __init__(self, category: ErrorCategory, detail: str = ""):
        self.category = category
        self.detail = detail
        reason = _CATEGORY_REASONS[category]
        super().__init__(f"{reason} ({detail})" if detail else reason)

    @classmethod
    def from_exception(cls, exc: Exception) -> "TransportError":
        return cls(categorize_exception(exc), str(exc).strip() or type(exc).__name__)


def categorize_exception(exc: Exception) -> ErrorCategory:
    """Map an httpx/ssl exception to an :class:`ErrorCategory`."""
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT

    cause = exc.__cause__ or exc.__context__
    if isinstance(exc, ssl.SSLError) or isinstance(cause, ssl.SSLError):
        return ErrorCategory.SSL_ERROR

    if isinstance(exc, httpx.ProtocolError):
        return ErrorCategory.PROTOCOL_ERROR

    if isinstance(exc, (httpx.NetworkError, httpx.ProxyError, ConnectionError)):
        return ErrorCategory.CONNECTION_ERROR

    return ErrorCategory.UNKNOWN_ERROR
