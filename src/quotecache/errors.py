"""Centralised error taxonomy and helpers for quotecache."""

from __future__ import annotations

from collections import Counter
from enum import Enum
from threading import Lock
from typing import Any, Mapping, MutableMapping, Type


class ErrorCode(str, Enum):
    """Stable identifiers for error categories used across the project."""

    DATA_SOURCE = "data_source"
    CACHE = "cache"
    VALIDATION = "validation"
    NOT_YET_AVAILABLE = "not_yet_available"
    LOCK = "lock"
    UNAVAILABLE = "unavailable"
    CONFIG = "config"
    UNKNOWN = "unknown"


_SENSITIVE_KEYS = {
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "authorization",
    "auth",
    "credential",
}
_REDACTED = "***REDACTED***"


def _safe_str(value: Any) -> str:
    """Return a defensive string representation for diagnostics."""

    try:
        text = str(value)
    except Exception:  # pragma: no cover - extremely defensive
        text = repr(value)
    return text


def describe_exception(exc: BaseException, *, max_depth: int = 3) -> dict[str, Any]:
    """Return a serialisable description of ``exc`` and its causes."""

    seen: set[int] = set()

    def _describe(err: BaseException, depth: int) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": type(err).__name__,
            "message": _safe_str(err),
        }
        status = getattr(err, "status", None)
        if isinstance(status, int):
            payload["status"] = status

        identity = id(err)
        if identity in seen:
            payload["cycle"] = True
            return payload
        seen.add(identity)

        if depth >= max_depth:
            return payload

        if err.__cause__ is not None:
            payload["cause"] = _describe(err.__cause__, depth + 1)
        elif err.__context__ is not None and not err.__suppress_context__:
            payload["context"] = _describe(err.__context__, depth + 1)
        return payload

    return _describe(exc, 0)


def _coerce(value: Any) -> Any:
    """Return a JSON-serialisable representation for ``value``."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return sanitize_context(value)
    if isinstance(value, (list, tuple, set)):
        return [_coerce(v) for v in value]
    return repr(value)


def sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a shallow copy of ``context`` with sensitive values redacted."""

    if not context:
        return {}
    sanitized: dict[str, Any] = {}
    for key, value in context.items():
        key_str = str(key)
        lowered = key_str.lower()
        if any(token in lowered for token in _SENSITIVE_KEYS):
            sanitized[key_str] = _REDACTED
        else:
            sanitized[key_str] = _coerce(value)
    return sanitized


class QCError(Exception):
    """Base class for structured application errors."""

    code: ErrorCode
    user_message: str
    context: MutableMapping[str, Any]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | str = ErrorCode.UNKNOWN,
        user_message: str | None = None,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.user_message = user_message or message
        self.context = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def add_context(self, **context: Any) -> "QCError":
        """Attach additional context to the error in-place."""

        for key, value in context.items():
            if value is not None:
                self.context[key] = value
        return self

    def with_user_message(self, message: str) -> "QCError":
        """Override the safe user-facing message and return ``self``."""

        self.user_message = message
        return self

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable payload describing the error."""

        payload: dict[str, Any] = {
            "code": self.code.value,
            "message": self.user_message,
            "type": self.__class__.__name__,
        }
        if self.context:
            payload["context"] = sanitize_context(self.context)
        if self.cause is not None:
            payload["cause"] = describe_exception(self.cause)
        return payload


class DataSourceError(QCError):
    def __init__(self, message: str = "Data source failure", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.DATA_SOURCE, **kwargs)


class FetchError(DataSourceError):
    """Upstream answered with a non-success status or an unusable payload.

    Never retried inside a single lookup; the next independent call or the
    daily refresh is the retry vehicle.
    """

    def __init__(self, message: str = "Upstream fetch failed", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class CacheError(QCError):
    def __init__(self, message: str = "Cache operation failed", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.CACHE, **kwargs)


class ValidationError(QCError):
    def __init__(self, message: str = "Validation error", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, **kwargs)


class InvalidArgument(ValidationError):
    """Caller supplied a malformed date, ticker or source identifier."""

    def __init__(self, message: str = "Invalid argument", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotYetAvailable(QCError):
    """Requested date is today or later in the source's reference timezone."""

    def __init__(self, message: str = "Data not yet available", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.NOT_YET_AVAILABLE, **kwargs)


class LockTimeout(QCError):
    """A lease could not be obtained within the configured wait."""

    def __init__(self, message: str = "Lease wait timed out", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.LOCK, **kwargs)


class FetchUnavailable(QCError):
    """Lease retries were exhausted under the blocking admission policy."""

    def __init__(self, message: str = "Fetch unavailable", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.UNAVAILABLE, **kwargs)


class ConfigurationError(QCError):
    def __init__(self, message: str = "Configuration error", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, **kwargs)


def wrap_error(
    exc: BaseException,
    error_cls: Type[QCError] = QCError,
    *,
    message: str,
    context: Mapping[str, Any] | None = None,
    user_message: str | None = None,
) -> QCError:
    """Return a :class:`QCError` instance wrapping ``exc``.

    Existing :class:`QCError` instances are enriched with ``context`` instead of
    being re-wrapped.
    """

    if isinstance(exc, QCError):
        if context:
            exc.add_context(**dict(context))
        if user_message:
            exc.with_user_message(user_message)
        return exc
    return error_cls(
        message,
        context=context,
        user_message=user_message,
        cause=exc,
    )


_error_counts: Counter[str] = Counter()
_counter_lock = Lock()


def record_error(error: QCError) -> None:
    """Increment in-memory metrics for ``error``."""

    with _counter_lock:
        _error_counts[error.code.value] += 1


def get_error_metrics() -> dict[str, int]:
    """Return a snapshot of error counts by :class:`ErrorCode`."""

    with _counter_lock:
        return dict(_error_counts)


def reset_error_metrics() -> None:
    """Reset the in-memory error metrics (intended for tests)."""

    with _counter_lock:
        _error_counts.clear()


__all__ = [
    "CacheError",
    "ConfigurationError",
    "DataSourceError",
    "ErrorCode",
    "FetchError",
    "FetchUnavailable",
    "InvalidArgument",
    "LockTimeout",
    "NotYetAvailable",
    "QCError",
    "ValidationError",
    "describe_exception",
    "get_error_metrics",
    "record_error",
    "reset_error_metrics",
    "sanitize_context",
    "wrap_error",
]
