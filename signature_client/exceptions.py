from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type


class ErrorKind(str, Enum):
    """Discrete failure classes. Every failure maps to exactly one."""

    VALIDATION = "ValidationError"
    AUTHENTICATION = "AuthenticationError"
    AUTHORIZATION = "AuthorizationError"
    NOT_FOUND = "NotFoundError"
    RATE_LIMIT = "RateLimitError"
    SERVER = "ServerError"
    NETWORK = "NetworkError"
    UNKNOWN = "UnknownError"


_RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.RATE_LIMIT})


def is_retryable(kind: ErrorKind) -> bool:
    return kind in _RETRYABLE_KINDS


@dataclass(frozen=True)
class RateLimitInfo:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_epoch_seconds: Optional[float] = None


@dataclass(frozen=True)
class ErrorRecord:
    kind: ErrorKind
    message: str
    http_status: Optional[int] = None
    code: Optional[str] = None
    validation_errors: Tuple[Any, ...] = ()
    rate_limit: Optional[RateLimitInfo] = None

    def is_retryable(self) -> bool:
        return is_retryable(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.http_status is not None:
            data["httpStatus"] = self.http_status
        if self.code is not None:
            data["code"] = self.code
        if self.validation_errors:
            data["validationErrors"] = list(self.validation_errors)
        if self.rate_limit is not None:
            data["rateLimit"] = {
                "limit": self.rate_limit.limit,
                "remaining": self.rate_limit.remaining,
                "resetEpochSeconds": self.rate_limit.reset_epoch_seconds,
            }
        return data


class SignatureError(Exception):
    """Base SDK error."""


class ApiError(SignatureError):
    """A classified transport or HTTP failure. Wraps one ErrorRecord."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str = "", *, record: Optional[ErrorRecord] = None):
        if record is None:
            record = ErrorRecord(kind=self.kind, message=message or self.kind.value)
        self.record = record
        super().__init__(record.message)

    @property
    def status_code(self) -> Optional[int]:
        return self.record.http_status

    @property
    def code(self) -> Optional[str]:
        return self.record.code

    @property
    def validation_errors(self) -> Tuple[Any, ...]:
        return self.record.validation_errors

    @property
    def rate_limit(self) -> Optional[RateLimitInfo]:
        return self.record.rate_limit

    def is_retryable(self) -> bool:
        return self.record.is_retryable()

    def __str__(self) -> str:
        text = self.record.message
        if self.record.http_status is not None:
            text = f"{text} ({self.record.http_status})"
        if self.record.code:
            text = f"{text} [{self.record.code}]"
        return text


class ValidationError(ApiError):
    """400/422 with field-level detail in ``validation_errors``."""

    kind = ErrorKind.VALIDATION


class AuthenticationError(ApiError):
    """401: missing, invalid, expired or rotated-out credentials."""

    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(ApiError):
    """403: credentials are valid but lack permission."""

    kind = ErrorKind.AUTHORIZATION


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND


class RateLimitError(ApiError):
    """429 Too Many Requests. ``rate_limit`` carries the server-declared window."""

    kind = ErrorKind.RATE_LIMIT


class ServerError(ApiError):
    """5xx errors we couldn't recover from after retries."""

    kind = ErrorKind.SERVER


class NetworkError(ApiError):
    """No response received: connection failure or timeout."""

    kind = ErrorKind.NETWORK


class UnknownError(ApiError):
    kind = ErrorKind.UNKNOWN


class CircuitOpenError(SignatureError):
    """The circuit for an endpoint group is OPEN; the request was never sent."""

    def __init__(self, group: str, retry_after: float):
        self.group = group
        self.retry_after = retry_after
        super().__init__(
            f"Circuit open for endpoint group '{group}', trial call allowed in {retry_after:.1f}s"
        )


class SessionExpiredError(SignatureError):
    """Credentials can no longer be refreshed; log in again or request a new signing URL."""


EXCEPTION_BY_KIND: Dict[ErrorKind, Type[ApiError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        AuthenticationError,
        AuthorizationError,
        NotFoundError,
        RateLimitError,
        ServerError,
        NetworkError,
        UnknownError,
    )
}
