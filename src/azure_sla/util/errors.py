from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    QUERY_ERROR = 4
    RUNTIME_ERROR = 5


class SlaError(Exception):
    """Base error for the SLA pipeline."""


class ConfigError(SlaError):
    """Raised for configuration or argument issues."""


class AuthResolutionError(SlaError):
    """Raised when no usable az CLI session is available."""


class QueryError(SlaError):
    """Base for failures returned by the remote query service."""


class QueryRejected(QueryError):
    """The service refused the query outright (malformed filter, forbidden scope). Never retried."""


class TransientFetchFailure(QueryError):
    """A single page request failed in a way that may succeed on retry."""


class ExportError(SlaError):
    """Raised when exporting artifacts fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthResolutionError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, QueryError):
        return int(ExitCode.QUERY_ERROR)
    if isinstance(exc, (ExportError, SlaError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


_TRANSIENT_MARKERS = (
    "toomanyrequests",
    "too many requests",
    "throttl",
    "rate limit",
    "status: 429",
    "(429)",
    "internal server error",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "(500)",
    "(502)",
    "(503)",
    "(504)",
    "timed out",
    "timeout",
    "connection reset",
    "connection aborted",
    "connectionerror",
    "temporarily unavailable",
)

_AUTH_MARKERS = (
    "az login",
    "please run 'az login'",
    "no subscription found",
    "refresh token has expired",
)


def is_auth_failure(message: str) -> bool:
    text = (message or "").strip().lower()
    return any(token in text for token in _AUTH_MARKERS)


def classify_az_error(message: str, context: str) -> QueryError:
    """
    Map az CLI stderr text to QueryRejected or TransientFetchFailure.
    Throttling, 5xx and connectivity errors are transient; anything else
    (BadRequest, InvalidQuery, AuthorizationFailed, ...) is a rejection.
    """
    text = (message or "").strip()
    low = text.lower()
    detail = text.splitlines()[0] if text else "no error output"
    if any(token in low for token in _TRANSIENT_MARKERS):
        return TransientFetchFailure(f"{context}: {detail}")
    return QueryRejected(f"{context}: {detail}")


def describe(exc: Optional[BaseException]) -> Optional[str]:
    if exc is None:
        return None
    return f"{exc.__class__.__name__}: {exc}"
