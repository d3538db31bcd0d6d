from datetime import datetime, timezone

import httpx
import pytest

from signature_client.exceptions import (
    AuthenticationError,
    ErrorKind,
    ErrorRecord,
    NotFoundError,
    ServerError,
    ValidationError,
    is_retryable,
)
from signature_client.utils import (
    classify_response,
    classify_transport_error,
    error_from_record,
    kind_for_status,
    parse_rate_limit,
    raise_for_status_mapped,
)


@pytest.mark.parametrize(
    "status, kind",
    [
        (400, ErrorKind.VALIDATION),
        (422, ErrorKind.VALIDATION),
        (401, ErrorKind.AUTHENTICATION),
        (403, ErrorKind.AUTHORIZATION),
        (404, ErrorKind.NOT_FOUND),
        (429, ErrorKind.RATE_LIMIT),
        (500, ErrorKind.SERVER),
        (503, ErrorKind.SERVER),
        (599, ErrorKind.SERVER),
        (409, ErrorKind.UNKNOWN),
        (304, ErrorKind.UNKNOWN),
    ],
)
def test_kind_for_status(status, kind):
    assert kind_for_status(status) is kind


def test_only_network_server_and_rate_limit_are_retryable():
    retryable = {k for k in ErrorKind if is_retryable(k)}
    assert retryable == {ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.RATE_LIMIT}


def test_validation_error_keeps_field_errors():
    resp = httpx.Response(
        422,
        json={
            "message": "Invalid payload",
            "code": "VALIDATION_ERROR",
            "errors": ["name is required", "email must be valid"],
        },
    )
    record = classify_response(resp)

    assert record.kind is ErrorKind.VALIDATION
    assert record.http_status == 422
    assert record.message == "Invalid payload"
    assert record.code == "VALIDATION_ERROR"
    assert record.validation_errors == ("name is required", "email must be valid")
    assert record.rate_limit is None


def test_message_precedence_follows_body_fields():
    resp = httpx.Response(400, json={"message": "generic", "detail": "specific"})
    assert classify_response(resp).message == "specific"

    resp = httpx.Response(401, json={"error": "invalid_grant", "error_description": "Refresh token expired"})
    assert classify_response(resp).message == "Refresh token expired"


def test_plain_text_and_empty_bodies():
    assert classify_response(httpx.Response(502, text="upstream exploded")).message == "upstream exploded"
    assert classify_response(httpx.Response(404)).message == "Not Found (404)"


def test_rate_limit_headers_are_parsed():
    resp = httpx.Response(
        429,
        headers={
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "1700000005",
        },
    )
    record = classify_response(resp, now=1_700_000_000.0)

    assert record.kind is ErrorKind.RATE_LIMIT
    assert record.rate_limit is not None
    assert record.rate_limit.limit == 100
    assert record.rate_limit.remaining == 0
    assert record.rate_limit.reset_epoch_seconds == 1_700_000_005.0


def test_retry_after_seconds_fills_missing_reset():
    info = parse_rate_limit({"Retry-After": "7"}, now=1000.0)
    assert info is not None
    assert info.reset_epoch_seconds == 1007.0
    assert info.limit is None


def test_retry_after_http_date():
    info = parse_rate_limit({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}, now=0.0)
    expected = datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc).timestamp()
    assert info is not None
    assert info.reset_epoch_seconds == expected


def test_no_rate_limit_headers():
    assert parse_rate_limit({}, now=0.0) is None


def test_transport_errors_become_network_errors():
    timeout = classify_transport_error(httpx.ReadTimeout("read timed out"))
    assert timeout.kind is ErrorKind.NETWORK
    assert timeout.code == "TIMEOUT"
    assert timeout.http_status is None

    refused = classify_transport_error(httpx.ConnectError("connection refused"))
    assert refused.kind is ErrorKind.NETWORK
    assert refused.code == "NETWORK_ERROR"
    assert refused.message == "connection refused"

    assert classify_transport_error(ValueError("odd")).kind is ErrorKind.UNKNOWN


def test_raise_for_status_mapped():
    raise_for_status_mapped(httpx.Response(200, json={}))

    with pytest.raises(NotFoundError) as excinfo:
        raise_for_status_mapped(httpx.Response(404, json={"message": "Envelope not found"}))
    assert excinfo.value.status_code == 404
    assert not excinfo.value.is_retryable()

    with pytest.raises(ServerError) as excinfo:
        raise_for_status_mapped(httpx.Response(503))
    assert excinfo.value.is_retryable()


def test_error_from_record_picks_class_by_kind():
    record = ErrorRecord(kind=ErrorKind.VALIDATION, message="bad", http_status=400, validation_errors=("x",))
    err = error_from_record(record)
    assert isinstance(err, ValidationError)
    assert err.record is record
    assert err.validation_errors == ("x",)
    assert str(err) == "bad (400)"


def test_exception_built_from_message():
    err = AuthenticationError("No token set")
    assert err.record.kind is ErrorKind.AUTHENTICATION
    assert err.record.message == "No token set"
    assert err.status_code is None


def test_non_finite_rate_limit_values_are_ignored():
    info = parse_rate_limit(
        {"X-RateLimit-Limit": "inf", "X-RateLimit-Remaining": "0", "Retry-After": "inf"},
        now=0.0,
    )
    assert info is not None
    assert info.limit is None
    assert info.remaining == 0
    assert info.reset_epoch_seconds is None

    record = classify_response(
        httpx.Response(429, headers={"X-RateLimit-Limit": "inf", "X-RateLimit-Reset": "nan"}),
        now=0.0,
    )
    assert record.kind is ErrorKind.RATE_LIMIT
    assert record.rate_limit is None
