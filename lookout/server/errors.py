"""Domain exceptions for the observability server.

Components raise these; only the HTTP layer translates them into responses.
Each class also inherits the closest builtin so callers can catch
``ValueError`` / ``LookupError`` / ``TimeoutError`` / ``ConnectionError``
without importing this module.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Caller-safe error classification surfaced at the service boundary."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


class LookoutError(Exception):
    """Base class; ``kind`` is the caller-safe classification."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ValidationError(LookoutError, ValueError):
    """Malformed event or session input.  Never retried."""

    kind = ErrorKind.VALIDATION


class NotFoundError(LookoutError, LookupError):
    """Unknown session or stream id.  Never retried."""

    kind = ErrorKind.NOT_FOUND


class OperationTimeoutError(LookoutError, TimeoutError):
    """An operation exceeded its time budget.  Retryable."""

    kind = ErrorKind.TIMEOUT


class TransientError(LookoutError, ConnectionError):
    """Network / availability class failure.  Retryable with backoff."""

    kind = ErrorKind.UNAVAILABLE


class CircuitOpenError(TransientError):
    """Raised without invoking the operation while its breaker is open."""

    def __init__(self, context: str) -> None:
        super().__init__(f"Circuit breaker open for {context}")
        self.context = context


class InternalError(LookoutError):
    """Anything unclassified."""


class ServiceError(LookoutError):
    """Classified, caller-safe error surfaced at the service boundary.

    ``message`` is generic in production mode and carries the original
    detail in development mode.
    """

    def __init__(self, kind: ErrorKind, message: str, *, context: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "message": self.message}
