import math
import time
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional, Tuple

import httpx

from .exceptions import (
    ApiError,
    ErrorKind,
    ErrorRecord,
    EXCEPTION_BY_KIND,
    RateLimitInfo,
)

RATE_LIMIT_LIMIT_HEADER = "X-RateLimit-Limit"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

# Body fields that may carry a human message, highest precedence first.
_MESSAGE_FIELDS = ("error_description", "detail", "error", "message")


def kind_for_status(status: int) -> ErrorKind:
    if status in (400, 422):
        return ErrorKind.VALIDATION
    if status == 401:
        return ErrorKind.AUTHENTICATION
    if status == 403:
        return ErrorKind.AUTHORIZATION
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if 500 <= status < 600:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value.strip()))
    except (ValueError, OverflowError):
        return None


def _retry_after_to_epoch(value: str, now: float) -> Optional[float]:
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return now + max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None


def parse_rate_limit(headers: Mapping[str, str], now: Optional[float] = None) -> Optional[RateLimitInfo]:
    """Extract limit/remaining/reset from response headers.

    ``X-RateLimit-Reset`` is epoch seconds. When absent, ``Retry-After``
    (delta seconds or an HTTP-date) is converted to an epoch reset.
    Returns None when no rate-limit header is present at all.
    """
    now = time.time() if now is None else now
    limit = _to_int(headers.get(RATE_LIMIT_LIMIT_HEADER))
    remaining = _to_int(headers.get(RATE_LIMIT_REMAINING_HEADER))

    reset: Optional[float] = None
    raw_reset = headers.get(RATE_LIMIT_RESET_HEADER)
    if raw_reset is not None:
        try:
            reset = float(raw_reset.strip())
        except ValueError:
            reset = None
        if reset is not None and not math.isfinite(reset):
            reset = None
    if reset is None and headers.get(RETRY_AFTER_HEADER):
        reset = _retry_after_to_epoch(headers[RETRY_AFTER_HEADER], now)

    if limit is None and remaining is None and reset is None:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset_epoch_seconds=reset)


def _extract_detail(resp: httpx.Response) -> Tuple[Optional[str], Optional[str], Tuple[Any, ...]]:
    """Return (message, code, validation_errors) from an error body."""
    try:
        payload = resp.json()
    except ValueError:
        text = resp.text.strip()
        return (text or None), None, ()

    if isinstance(payload, str):
        return (payload.strip() or None), None, ()
    if not isinstance(payload, dict):
        return None, None, ()

    message = None
    for field in _MESSAGE_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            message = value
            break

    code = payload.get("code")
    errors = payload.get("errors")
    validation_errors = tuple(errors) if isinstance(errors, list) else ()
    return message, (str(code) if code is not None else None), validation_errors


def classify_response(resp: httpx.Response, *, now: Optional[float] = None) -> ErrorRecord:
    """Map an HTTP error response to an ErrorRecord."""
    kind = kind_for_status(resp.status_code)
    message, code, validation_errors = _extract_detail(resp)
    if not message:
        message = f"{resp.reason_phrase or kind.value} ({resp.status_code})"

    rate_limit = None
    if kind is ErrorKind.RATE_LIMIT:
        rate_limit = parse_rate_limit(resp.headers, now=now)

    return ErrorRecord(
        kind=kind,
        message=message,
        http_status=resp.status_code,
        code=code,
        validation_errors=validation_errors if kind is ErrorKind.VALIDATION else (),
        rate_limit=rate_limit,
    )


def classify_transport_error(exc: Exception) -> ErrorRecord:
    """Map a failure where no response was received to a NetworkError record."""
    if isinstance(exc, httpx.TimeoutException):
        code = "TIMEOUT"
        message = str(exc) or "Request timed out"
    elif isinstance(exc, httpx.TransportError):
        code = "NETWORK_ERROR"
        message = str(exc) or "Network error"
    else:
        return ErrorRecord(kind=ErrorKind.UNKNOWN, message=str(exc) or repr(exc))
    return ErrorRecord(kind=ErrorKind.NETWORK, message=message, code=code)


def error_from_record(record: ErrorRecord) -> ApiError:
    return EXCEPTION_BY_KIND[record.kind](record=record)


def raise_for_status_mapped(resp: httpx.Response, *, now: Optional[float] = None) -> None:
    """Map HTTP errors to SDK exceptions."""
    if 200 <= resp.status_code < 300:
        return
    raise error_from_record(classify_response(resp, now=now))
