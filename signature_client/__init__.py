from loguru import logger

from .auth import TokenKind, TokenManager, TokenState, TokenStatus
from .cache import CacheEntry, CacheStore
from .circuit import BreakerState, CircuitBreaker, CircuitBreakerConfig, CircuitState
from .client import SignatureClient
from .exceptions import (
    SignatureError,
    ApiError,
    ErrorKind,
    ErrorRecord,
    RateLimitInfo,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    ServerError,
    NetworkError,
    UnknownError,
    CircuitOpenError,
    SessionExpiredError,
)
from .pipeline import RequestPipeline
from .retry import RetryPolicy

# Library logging is opt-in: logger.enable("signature_client")
logger.disable("signature_client")

__all__ = [
    "SignatureClient",
    "RequestPipeline",
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "BreakerState",
    "CacheStore",
    "CacheEntry",
    "TokenManager",
    "TokenState",
    "TokenKind",
    "TokenStatus",
    "SignatureError",
    "ApiError",
    "ErrorKind",
    "ErrorRecord",
    "RateLimitInfo",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "UnknownError",
    "CircuitOpenError",
    "SessionExpiredError",
]
