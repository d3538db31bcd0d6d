import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from .config import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
)
from .exceptions import ApiError, ErrorKind, ErrorRecord

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry schedule for retryable failures.

    ``max_retries`` counts retries after the first attempt. Delays are in
    seconds and grow as ``initial_delay * backoff_multiplier ** retry_index``
    capped at ``max_delay``; a rate-limit reset declared by the server
    replaces the schedule.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def backoff_delay(self, retry_index: int) -> float:
        return min(self.initial_delay * (self.backoff_multiplier ** retry_index), self.max_delay)

    def compute_delay(self, retry_index: int, record: ErrorRecord, now: float) -> float:
        if (
            record.kind is ErrorKind.RATE_LIMIT
            and record.rate_limit is not None
            and record.rate_limit.reset_epoch_seconds is not None
        ):
            return max(0.0, record.rate_limit.reset_epoch_seconds - now)
        return self.backoff_delay(retry_index)

    def should_retry(self, retry_index: int, record: ErrorRecord) -> bool:
        return record.is_retryable() and retry_index < self.max_retries


async def run_with_retry(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.time,
    description: Optional[str] = None,
) -> T:
    """Run ``call`` until it succeeds, fails non-retryably, or retries run out.

    Only ApiError is considered; anything else (including CircuitOpenError)
    propagates on the first occurrence. The last ApiError is re-raised unchanged.
    """
    retry_index = 0
    while True:
        try:
            return await call()
        except ApiError as exc:
            if not policy.should_retry(retry_index, exc.record):
                raise
            delay = policy.compute_delay(retry_index, exc.record, clock())
            logger.warning(
                f"Retry {retry_index + 1}/{policy.max_retries} for {description or 'request'} "
                f"in {delay:.2f}s after {exc.record.kind.value}: {exc.record.message}"
            )
            await sleep(delay)
            retry_index += 1
