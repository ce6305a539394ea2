"""
    Common helpers shared by the providers
"""

import errno
import time
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Optional
import openai
import requests
from botocore.exceptions import ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError
from dateutil import parser as date_parser
from receipt_inventory.config import setup_logging
from receipt_inventory.errors import ErrorKind


setup_logging()
logger = logging.getLogger(__name__)

_TIMEOUT_ERRORS = (
    TimeoutError,
    requests.exceptions.Timeout,
    ConnectTimeoutError,
    ReadTimeoutError,
    openai.APITimeoutError,
)

_STATUS_KINDS = {
    401: ErrorKind.AUTHENTICATION,
    429: ErrorKind.QUOTA_EXCEEDED,
}


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str


def elapsed_ms(started_at: float) -> int:
    """Milliseconds since a time.perf_counter() reading"""
    return int((time.perf_counter() - started_at) * 1000)


def classify_error(error: BaseException, service: str) -> ClassifiedError:
    """
    Turn an upstream exception into a readable message.

    Checked in order: structured error reported by the API, connection
    refused, timeout, HTTP 429, HTTP 401, then the raw message.
    """
    status = _status_code(error)

    structured = _structured_message(error)
    if structured:
        return ClassifiedError(_STATUS_KINDS.get(status, ErrorKind.UPSTREAM_ERROR), f"{service} API error: {structured}")

    if any(_is_connection_refused(e) for e in _iter_chain(error)):
        return ClassifiedError(ErrorKind.CONNECTION_REFUSED, f"Unable to contact the {service} API (connection refused)")

    if any(isinstance(e, _TIMEOUT_ERRORS) for e in _iter_chain(error)):
        return ClassifiedError(ErrorKind.TIMEOUT, f"{service} API request timed out")

    if status == 429:
        return ClassifiedError(ErrorKind.QUOTA_EXCEEDED, f"{service} API quota exceeded, retry later")

    if status == 401:
        return ClassifiedError(ErrorKind.AUTHENTICATION, f"Invalid {service} API key")

    message = str(error) or error.__class__.__name__
    return ClassifiedError(ErrorKind.UNKNOWN, f"{service} error: {message}")


def _iter_chain(error: BaseException, max_depth: int = 8) -> Iterator[BaseException]:
    """Walk an exception and the errors it wraps"""
    seen = set()
    pending = [error]

    while pending and len(seen) < max_depth:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        # urllib3 keeps the underlying error on .reason, requests passes it as an arg
        for nested in (current.__cause__, current.__context__, getattr(current, 'reason', None), *current.args):
            if isinstance(nested, BaseException):
                pending.append(nested)


def _is_connection_refused(error: BaseException) -> bool:
    if isinstance(error, (ConnectionRefusedError, EndpointConnectionError)):
        return True
    return getattr(error, 'errno', None) == errno.ECONNREFUSED


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, 'status_code', None)
    if isinstance(status, int):
        return status

    response = getattr(error, 'response', None)
    if isinstance(response, dict):
        return response.get('ResponseMetadata', {}).get('HTTPStatusCode')
    status = getattr(response, 'status_code', None)
    return status if isinstance(status, int) else None


def _structured_message(error: BaseException) -> Optional[str]:
    # Mindee HTTP errors
    api_message = getattr(error, 'api_message', None)
    if api_message:
        api_details = getattr(error, 'api_details', None)
        return f"{api_message} ({api_details})" if api_details else str(api_message)

    if isinstance(error, ClientError):
        details = error.response.get('Error', {})
        return details.get('Message') or details.get('Code')

    return None


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse an amount (number or text with currency symbols) to Decimal"""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() else None

    amount_str = str(value).strip()
    if not amount_str:
        return None

    try:
        negative = amount_str.startswith('-') or amount_str.endswith('-')

        # Remove currency symbols and spaces
        cleaned = ''.join(c for c in amount_str if c.isdigit() or c in '.,')

        if not cleaned:
            return None

        # Handle decimal separators
        if ',' in cleaned and '.' in cleaned:
            if cleaned.rfind(',') > cleaned.rfind('.'):
                cleaned = cleaned.replace('.', '').replace(',', '.')
            else:
                cleaned = cleaned.replace(',', '')
        elif ',' in cleaned:
            parts = cleaned.split(',')
            if len(parts) == 2 and len(parts[1]) in (1, 2):  # Decimal separator
                cleaned = cleaned.replace(',', '.')
            else:
                cleaned = cleaned.replace(',', '')

        result = Decimal(cleaned)
        return -result if negative else result

    except (ValueError, InvalidOperation):
        logger.warning(f"Could not parse amount: {amount_str}")
        return None


def normalize_date(value: Any) -> Optional[date]:
    """Parse a date value; European day-first order for ambiguous text"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    date_str = str(value).strip()
    if not date_str:
        return None

    try:
        return date.fromisoformat(date_str[:10])
    except ValueError:
        pass

    try:
        return date_parser.parse(date_str, dayfirst=True).date()
    except (ValueError, OverflowError):
        logger.warning(f"Could not parse date: {date_str}")
        return None
