from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
import requests

from receipt_inventory.errors import ErrorKind
from receipt_inventory.providers.helpers import classify_error, normalize_date, parse_amount


class StatusError(Exception):
    def __init__(self, status_code, message="request failed"):
        super().__init__(message)
        self.status_code = status_code


def _wrapped_refusal() -> Exception:
    try:
        try:
            raise ConnectionRefusedError(111, "Connection refused")
        except ConnectionRefusedError as inner:
            raise requests.exceptions.ConnectionError("Max retries exceeded") from inner
    except requests.exceptions.ConnectionError as outer:
        return outer


def test_structured_error_wins_over_status() -> None:
    error = StatusError(429, "Too many requests")
    error.api_message = "Maximum pages per minute reached"

    classified = classify_error(error, "Mindee")

    assert classified.message == "Mindee API error: Maximum pages per minute reached"
    assert classified.kind == ErrorKind.QUOTA_EXCEEDED


def test_connection_refused_found_in_cause_chain() -> None:
    classified = classify_error(_wrapped_refusal(), "Mindee")

    assert classified.kind == ErrorKind.CONNECTION_REFUSED
    assert classified.message == "Unable to contact the Mindee API (connection refused)"


def test_connection_refused_checked_before_timeout() -> None:
    error = TimeoutError("slow")
    error.__cause__ = ConnectionRefusedError(111, "Connection refused")

    assert classify_error(error, "Mindee").kind == ErrorKind.CONNECTION_REFUSED


@pytest.mark.parametrize("error", [
    TimeoutError(),
    requests.exceptions.ReadTimeout("read timeout"),
])
def test_timeouts(error) -> None:
    classified = classify_error(error, "OpenAI")

    assert classified.kind == ErrorKind.TIMEOUT
    assert classified.message == "OpenAI API request timed out"


def test_quota_and_authentication_status_codes() -> None:
    assert classify_error(StatusError(429), "OpenAI").message == "OpenAI API quota exceeded, retry later"
    assert classify_error(StatusError(401), "OpenAI").message == "Invalid OpenAI API key"
    assert classify_error(StatusError(401), "OpenAI").kind == ErrorKind.AUTHENTICATION


def test_status_from_response_object() -> None:
    error = requests.exceptions.HTTPError("429 Client Error")
    error.response = SimpleNamespace(status_code=429)

    assert classify_error(error, "Mindee").kind == ErrorKind.QUOTA_EXCEEDED


def test_generic_fallback_uses_raw_message() -> None:
    classified = classify_error(ValueError("unexpected payload"), "Mindee")

    assert classified.kind == ErrorKind.UNKNOWN
    assert classified.message == "Mindee error: unexpected payload"


@pytest.mark.parametrize("value, expected", [
    ("12,50 €", Decimal("12.50")),
    ("1.234,56", Decimal("1234.56")),
    ("1,234.56", Decimal("1234.56")),
    ("€ 3.2", Decimal("3.2")),
    ("-0,40", Decimal("-0.40")),
    (7.35, Decimal("7.35")),
    ("", None),
    ("abc", None),
    (None, None),
])
def test_parse_amount(value, expected) -> None:
    assert parse_amount(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("2025-03-04", date(2025, 3, 4)),
    ("04/03/2025", date(2025, 3, 4)),
    ("2025-03-04T10:22:00", date(2025, 3, 4)),
    (date(2025, 3, 4), date(2025, 3, 4)),
    ("not a date", None),
    (None, None),
])
def test_normalize_date(value, expected) -> None:
    assert normalize_date(value) == expected
