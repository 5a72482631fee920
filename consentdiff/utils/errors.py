"""
Error types and helpers for the probe.

Every failure that aborts a run carries one of a small closed set
of error codes so the calling layer can react without parsing
messages.  Degraded evidence is never raised; it is recorded as
data on the result instead.
"""

from __future__ import annotations

from typing import Literal

ErrorCode = Literal[
    "MISSING_URL",
    "AUTH_FAILED",
    "TRANSPORT_FAILED",
    "EXECUTION_ERROR",
]


class ProbeError(Exception):
    """Base class for failures that abort a probe run."""

    code: ErrorCode = "EXECUTION_ERROR"

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class MissingUrlError(ProbeError):
    """No usable target URL was supplied."""

    code: ErrorCode = "MISSING_URL"


class AuthFailedError(ProbeError):
    """Browser host credentials are missing or were rejected."""

    code: ErrorCode = "AUTH_FAILED"


class TransportFailedError(ProbeError):
    """The debugging-protocol connection could not be used."""

    code: ErrorCode = "TRANSPORT_FAILED"


class TransportClosedError(TransportFailedError):
    """The connection dropped while commands were still pending."""


class ProtocolError(ProbeError):
    """The browser answered a command with an error payload."""

    def __init__(self, method: str, error: dict[str, object]) -> None:
        self.method = method
        self.protocol_code = error.get("code")
        self.protocol_message = str(error.get("message", "Unknown protocol error"))
        super().__init__(
            f"{method} failed: {self.protocol_message}",
            details={"method": method, "code": self.protocol_code},
        )


class PageScriptError(ProbeError):
    """An in-page operation threw inside the page."""

    def __init__(self, operation: str, description: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} threw: {description}", details={"operation": operation})


class InvalidPhaseTransition(Exception):
    """Raised when the phase controller is asked to move backwards."""


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, Exception):
        return str(error) or type(error).__name__
    return "Unknown error"


def error_code_for(error: BaseException) -> ErrorCode:
    """Map any exception escaping a run to its closed error code."""
    if isinstance(error, ProbeError) and not isinstance(error, ProtocolError):
        return error.code
    return "EXECUTION_ERROR"
