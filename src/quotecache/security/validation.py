"""Input validation helpers shared across the public entry points."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from quotecache.errors import InvalidArgument

TICKER_PATTERN = re.compile(r"^[A-Z0-9.\-=^]{1,12}$")
SOURCE_PATTERN = re.compile(r"^[a-z0-9_]{1,32}$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class SanitizationError(InvalidArgument):
    """Raised when user supplied data fails validation."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, context={"field": field} if field else None)


def sanitize_single_ticker(ticker: str) -> str:
    normalized = ticker.strip().upper()
    if not normalized or not TICKER_PATTERN.fullmatch(normalized):
        raise SanitizationError("Ticker contains invalid characters.", field="instrument")
    return normalized


def sanitize_source_id(source: str) -> str:
    normalized = source.strip().lower()
    if not SOURCE_PATTERN.fullmatch(normalized):
        raise SanitizationError("Source identifier is invalid.", field="source")
    return normalized


def sanitize_value_date(value: Any) -> date:
    """Return ``value`` as a :class:`date`.

    Accepts ``date`` and ``datetime`` objects (the time part is discarded) and
    ``YYYY-MM-DD`` strings.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if ISO_DATE_PATTERN.fullmatch(text):
            try:
                return date.fromisoformat(text)
            except ValueError:
                pass
        raise SanitizationError("Date must be formatted as YYYY-MM-DD.", field="date")
    raise SanitizationError("Date must be a date or an ISO date string.", field="date")


def sanitize_positive_int(
    value: Any,
    *,
    field: str,
    minimum: int = 1,
    maximum: int | None = None,
) -> int:
    """Return ``value`` as a bounded positive integer or raise ``SanitizationError``."""

    if isinstance(value, bool):
        raise SanitizationError("Boolean value is not allowed.", field=field)
    try:
        normalized = int(value)
    except (TypeError, ValueError):
        raise SanitizationError("Value must be an integer.", field=field) from None
    if normalized < minimum:
        raise SanitizationError(f"Value must be at least {minimum}.", field=field)
    if maximum is not None and normalized > maximum:
        raise SanitizationError(f"Value must not exceed {maximum}.", field=field)
    return normalized
