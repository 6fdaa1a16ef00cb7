"""Security utilities for quotecache services."""

from .validation import (
    ISO_DATE_PATTERN,
    SOURCE_PATTERN,
    TICKER_PATTERN,
    SanitizationError,
    sanitize_positive_int,
    sanitize_single_ticker,
    sanitize_source_id,
    sanitize_value_date,
)

__all__ = [
    "ISO_DATE_PATTERN",
    "SOURCE_PATTERN",
    "TICKER_PATTERN",
    "SanitizationError",
    "sanitize_positive_int",
    "sanitize_single_ticker",
    "sanitize_source_id",
    "sanitize_value_date",
]
