"""
Error taxonomy for upstream completion calls.

Every failure on the upstream call path is reduced to an ``ErrorKind`` by
``classify_error``. Retry and breaker decisions dispatch on that kind rather
than on exception types, so the policy lives in one place.

This module is pure — no I/O, no network calls, no side effects.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Classification of a failed upstream call."""

    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class UpstreamError(Exception):
    """Raised by completion providers when the upstream call fails.

    Args:
        message: Human-readable description (never shown to end users).
        kind: Failure class. Derived from ``status`` when omitted.
        status: HTTP status code returned by the upstream, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status: int | None = None,
    ) -> None:
        self.status = status
        self.kind = kind if kind is not None else kind_for_status(status)
        super().__init__(message)


def kind_for_status(status: int | None) -> ErrorKind:
    """Map an HTTP status code to an ``ErrorKind``.

    Args:
        status: HTTP status code, or None when the failure had no status.

    Returns:
        ``RATE_LIMITED`` for 429, ``UNAVAILABLE`` for 5xx, ``UNKNOWN`` otherwise.
    """
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status is not None and 500 <= status < 600:
        return ErrorKind.UNAVAILABLE
    return ErrorKind.UNKNOWN


def status_of(exc: BaseException) -> int | None:
    """Extract an HTTP status from the common SDK error shapes.

    Looks at ``status``, ``status_code`` and ``response.status_code`` in
    that order.
    """
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the ``ErrorKind`` of any exception raised on the upstream path.

    Exceptions that carry an explicit ``kind`` (``UpstreamError`` and the
    circuit breaker errors) are trusted; anything else is classified by the
    HTTP status it carries.
    """
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return kind_for_status(status_of(exc))


def is_transient(kind: ErrorKind) -> bool:
    """True if a failure of this kind is worth retrying."""
    return kind in (ErrorKind.RATE_LIMITED, ErrorKind.UNAVAILABLE)
