from datetime import date, datetime

import pytest

from quotecache.errors import InvalidArgument
from quotecache.security.validation import (
    SanitizationError,
    sanitize_positive_int,
    sanitize_single_ticker,
    sanitize_source_id,
    sanitize_value_date,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2023-06-15", date(2023, 6, 15)),
        (" 2023-06-15 ", date(2023, 6, 15)),
        (date(2023, 6, 15), date(2023, 6, 15)),
        (datetime(2023, 6, 15, 18, 30), date(2023, 6, 15)),
    ],
)
def test_sanitize_value_date_accepts_supported_forms(raw, expected):
    assert sanitize_value_date(raw) == expected


@pytest.mark.parametrize("raw", ["2023-02-30", "20230615", "15/06/2023", "", None, 20230615])
def test_sanitize_value_date_rejects_invalid(raw):
    with pytest.raises(SanitizationError) as excinfo:
        sanitize_value_date(raw)
    assert excinfo.value.context == {"field": "date"}


def test_sanitization_error_is_invalid_argument():
    assert issubclass(SanitizationError, InvalidArgument)


def test_sanitize_single_ticker_normalises_case():
    assert sanitize_single_ticker(" brk.b ") == "BRK.B"
    assert sanitize_single_ticker("^gspc") == "^GSPC"


@pytest.mark.parametrize("raw", ["", "AAPL;DROP", "A" * 13, "aapl:2024"])
def test_sanitize_single_ticker_rejects_invalid(raw):
    with pytest.raises(SanitizationError):
        sanitize_single_ticker(raw)


def test_sanitize_source_id():
    assert sanitize_source_id(" ECB_USD ") == "ecb_usd"
    with pytest.raises(SanitizationError):
        sanitize_source_id("ecb-usd:2023")


def test_sanitize_positive_int_bounds():
    assert sanitize_positive_int("5", field="delay") == 5
    with pytest.raises(SanitizationError):
        sanitize_positive_int(True, field="delay")
    with pytest.raises(SanitizationError):
        sanitize_positive_int(0, field="delay")
    with pytest.raises(SanitizationError):
        sanitize_positive_int(11, field="delay", maximum=10)
