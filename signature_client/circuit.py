"""
Per endpoint-group circuit breaking.

States:
- CLOSED: normal operation, requests pass through
- OPEN: the group is failing, requests are refused without network I/O
- HALF_OPEN: after ``open_until`` has passed, up to ``half_open_max_requests``
  trial calls are in flight at once; the rest are refused

Transitions:
- CLOSED -> OPEN: ``failure_threshold`` consecutive failures
- OPEN -> HALF_OPEN: on the first attempt at or after ``open_until``
- HALF_OPEN -> CLOSED: ``success_threshold`` consecutive successes
- HALF_OPEN -> OPEN: any failure, with a fresh timeout

The transitions live in the pure function ``transition``; ``CircuitBreaker``
only holds the current value and logs changes.
"""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .config import (
    API_ROOT,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_HALF_OPEN_MAX_REQUESTS,
    DEFAULT_RESET_TIMEOUT,
    DEFAULT_SUCCESS_THRESHOLD,
)
from .exceptions import CircuitOpenError, ErrorKind


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class Outcome(str, Enum):
    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"
    RELEASE = "release"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    success_threshold: int = DEFAULT_SUCCESS_THRESHOLD
    reset_timeout: float = DEFAULT_RESET_TIMEOUT  # seconds
    half_open_max_requests: int = DEFAULT_HALF_OPEN_MAX_REQUESTS  # trial calls in flight while HALF_OPEN


@dataclass(frozen=True)
class CircuitState:
    state: BreakerState = BreakerState.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    open_until: Optional[float] = None
    half_open_requests: int = 0


def trips_breaker(kind: ErrorKind) -> bool:
    """Only failures that say the service is unhealthy count against it."""
    return kind in (ErrorKind.NETWORK, ErrorKind.SERVER)


def transition(
    current: CircuitState,
    outcome: Outcome,
    *,
    now: float,
    config: CircuitBreakerConfig,
) -> CircuitState:
    if outcome is Outcome.ATTEMPT:
        if (
            current.state is BreakerState.OPEN
            and current.open_until is not None
            and now >= current.open_until
        ):
            # this attempt is the trial call
            return CircuitState(state=BreakerState.HALF_OPEN, half_open_requests=1)
        if current.state is BreakerState.HALF_OPEN:
            return replace(current, half_open_requests=current.half_open_requests + 1)
        return current

    if outcome is Outcome.RELEASE:
        if current.state is BreakerState.HALF_OPEN:
            return replace(current, half_open_requests=max(0, current.half_open_requests - 1))
        return current

    if outcome is Outcome.SUCCESS:
        if current.state is BreakerState.HALF_OPEN:
            successes = current.consecutive_successes + 1
            if successes >= config.success_threshold:
                return CircuitState()
            return replace(
                current,
                consecutive_successes=successes,
                consecutive_failures=0,
                half_open_requests=max(0, current.half_open_requests - 1),
            )
        if current.state is BreakerState.CLOSED:
            return replace(current, consecutive_failures=0, consecutive_successes=current.consecutive_successes + 1)
        return current

    # FAILURE
    failures = current.consecutive_failures + 1
    if current.state is BreakerState.HALF_OPEN or (
        current.state is BreakerState.CLOSED and failures >= config.failure_threshold
    ):
        return CircuitState(
            state=BreakerState.OPEN,
            consecutive_failures=failures,
            open_until=now + config.reset_timeout,
        )
    return replace(current, consecutive_failures=failures, consecutive_successes=0)


def allows_request(current: CircuitState, *, now: float, config: CircuitBreakerConfig) -> bool:
    """Whether an ATTEMPT at ``now`` may go out on the wire."""
    if current.state is BreakerState.CLOSED:
        return True
    if current.state is BreakerState.OPEN:
        return current.open_until is not None and now >= current.open_until
    return current.half_open_requests < config.half_open_max_requests


def endpoint_group(path: str, api_root: str = API_ROOT) -> str:
    """First path segment below the API root, e.g. ``envelopes``."""
    root = api_root.rstrip("/")
    relative = path[len(root):] if root and path.startswith(root + "/") else path
    for segment in relative.split("/"):
        if segment:
            return segment
    return "/"


class CircuitBreaker:
    """
    Circuit breaker for a single endpoint group.

    Usage:
        breaker.before_call()      # raises CircuitOpenError when OPEN
        try:
            result = await send()
        except NetworkError:
            breaker.record_failure()
            raise
        except BaseException:
            breaker.release()
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        group: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.group = group
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _apply(self, outcome: Outcome) -> None:
        before = self._state
        self._state = transition(before, outcome, now=self._clock(), config=self.config)
        if before.state is self._state.state:
            return
        if self._state.state is BreakerState.OPEN:
            logger.warning(
                f"Circuit '{self.group}' OPENED after {self._state.consecutive_failures} consecutive failures"
            )
        elif self._state.state is BreakerState.HALF_OPEN:
            logger.info(f"Circuit '{self.group}' HALF_OPEN, allowing trial call")
        else:
            logger.info(f"Circuit '{self.group}' CLOSED (recovered)")

    def before_call(self) -> None:
        """Admit one call or raise CircuitOpenError.

        An admitted call must be settled with exactly one of
        ``record_success``, ``record_failure`` or ``release``.
        """
        if not allows_request(self._state, now=self._clock(), config=self.config):
            raise CircuitOpenError(self.group, self.time_until_trial() or 0.0)
        self._apply(Outcome.ATTEMPT)

    def record_success(self) -> None:
        self._apply(Outcome.SUCCESS)

    def record_failure(self) -> None:
        self._apply(Outcome.FAILURE)

    def release(self) -> None:
        """Give back an admitted call that ended without a service outcome."""
        self._apply(Outcome.RELEASE)

    def reset(self) -> None:
        self._state = CircuitState()
        logger.info(f"Circuit '{self.group}' manually reset")

    def time_until_trial(self) -> Optional[float]:
        if self._state.state is not BreakerState.OPEN or self._state.open_until is None:
            return None
        return max(0.0, self._state.open_until - self._clock())

    def get_status(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "state": self._state.state.value,
            "consecutive_failures": self._state.consecutive_failures,
            "consecutive_successes": self._state.consecutive_successes,
            "open_until": self._state.open_until,
            "half_open_requests": self._state.half_open_requests,
        }


class CircuitBreakerRegistry:
    """Lazily creates one CircuitBreaker per endpoint group."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(self, group: str) -> CircuitBreaker:
        if group not in self._breakers:
            self._breakers[group] = CircuitBreaker(group, self._default_config, clock=self._clock)
        return self._breakers[group]

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {group: cb.get_status() for group, cb in self._breakers.items()}

    def get_open_circuits(self) -> List[str]:
        return [g for g, cb in self._breakers.items() if cb.state.state is BreakerState.OPEN]

    def reset_all(self) -> None:
        for cb in self._breakers.values():
            cb.reset()
