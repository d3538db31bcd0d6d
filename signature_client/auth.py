import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from .config import DEFAULT_REFRESH_SKEW
from .exceptions import AuthenticationError, SessionExpiredError


class TokenKind(str, Enum):
    ORGANIZATION_HYBRID = "organizationHybrid"
    SIGNER_SESSION = "signerSession"


class TokenStatus(str, Enum):
    UNSET = "UNSET"
    AUTHENTICATED = "AUTHENTICATED"
    REFRESHING = "REFRESHING"
    EXPIRED_TERMINAL = "EXPIRED_TERMINAL"


def parse_timestamp(value: Any) -> Optional[float]:
    """ISO 8601 string or epoch number -> epoch seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


@dataclass(frozen=True)
class TokenState:
    kind: TokenKind
    access_token: str
    access_expires_at: Optional[float] = None  # None: long-lived API token
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[float] = None


@dataclass(frozen=True)
class TokenGrant:
    """A token pair as issued by the server on login or refresh."""

    access_token: str
    access_expires_at: Optional[float] = None
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, now: float) -> "TokenGrant":
        """Build from a camelCase refresh/login payload.

        Access expiry comes from ``accessExpiresAt`` (or ``expiresAt``) when
        present, otherwise from ``expiresIn`` seconds relative to ``now``.
        """
        access_expires_at = parse_timestamp(payload.get("accessExpiresAt") or payload.get("expiresAt"))
        if access_expires_at is None and payload.get("expiresIn") is not None:
            access_expires_at = now + float(payload["expiresIn"])
        return cls(
            access_token=payload["accessToken"],
            access_expires_at=access_expires_at,
            refresh_token=payload.get("refreshToken"),
            refresh_expires_at=parse_timestamp(payload.get("refreshExpiresAt")),
        )


Refresher = Callable[[TokenState], Awaitable[TokenGrant]]


class TokenManager:
    """
    Holds the bearer credential of one client instance and refreshes it lazily.

    At most one refresh is in flight: concurrent callers of
    ``get_valid_token()`` await the same task and see the same result or
    the same exception. Tokens live in memory only.
    """

    def __init__(
        self,
        *,
        state: Optional[TokenState] = None,
        refresher: Optional[Refresher] = None,
        refresh_skew: float = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        self.refresh_skew = refresh_skew
        self._refresher = refresher
        self._clock = clock
        self._state: Optional[TokenState] = None
        self._status = TokenStatus.UNSET
        self._refresh_task: Optional["asyncio.Future[TokenState]"] = None
        if state is not None:
            self.set_state(state)

    @property
    def state(self) -> Optional[TokenState]:
        return self._state

    @property
    def status(self) -> TokenStatus:
        return self._status

    def set_refresher(self, refresher: Optional[Refresher]) -> None:
        self._refresher = refresher

    def set_state(self, state: TokenState) -> None:
        self._state = state
        self._status = TokenStatus.AUTHENTICATED

    def revoke(self) -> None:
        """Drop both tokens immediately, independent of expiry."""
        self._state = None
        self._status = TokenStatus.EXPIRED_TERMINAL
        logger.info("Tokens revoked; session requires re-authentication")

    # ---------- expiry checks ----------
    def _can_refresh(self, state: TokenState, now: float) -> bool:
        if not state.refresh_token or self._refresher is None:
            return False
        return state.refresh_expires_at is None or now < state.refresh_expires_at

    def needs_refresh(self) -> bool:
        state = self._state
        if state is None or state.access_expires_at is None:
            return False
        return self._clock() >= state.access_expires_at - self.refresh_skew

    # ---------- public ----------
    async def get_valid_token(self) -> str:
        if self._status is TokenStatus.EXPIRED_TERMINAL:
            raise SessionExpiredError("Session expired; re-authenticate to continue")
        if self._refresh_task is not None:
            return (await self.refresh()).access_token

        state = self._state
        if state is None:
            raise AuthenticationError("No token set. Log in or provide an API token first.")
        if not self.needs_refresh():
            return state.access_token

        now = self._clock()
        if self._can_refresh(state, now):
            return (await self.refresh()).access_token

        assert state.access_expires_at is not None
        refresh_lapsed = state.refresh_expires_at is not None and now >= state.refresh_expires_at
        if state.refresh_token and refresh_lapsed and now >= state.access_expires_at:
            self._expire("refresh token expired")
            raise SessionExpiredError("Session expired; re-authenticate to continue")
        return state.access_token

    async def refresh(self) -> TokenState:
        """Refresh now, joining the in-flight refresh if there is one."""
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        # shield: a cancelled waiter must not cancel the refresh others await
        return await asyncio.shield(self._refresh_task)

    # ---------- internals ----------
    def _expire(self, reason: str) -> None:
        self._state = None
        self._status = TokenStatus.EXPIRED_TERMINAL
        logger.warning(f"Session expired: {reason}")

    async def _do_refresh(self) -> TokenState:
        try:
            state = self._state
            if self._status is TokenStatus.EXPIRED_TERMINAL or state is None:
                raise SessionExpiredError("Session expired; re-authenticate to continue")
            if not self._can_refresh(state, self._clock()):
                self._expire("no usable refresh token")
                raise SessionExpiredError("Session expired; re-authenticate to continue")

            self._status = TokenStatus.REFRESHING
            logger.info(f"Refreshing {state.kind.value} access token")
            try:
                assert self._refresher is not None
                grant = await self._refresher(state)
            except AuthenticationError as exc:
                self._expire(f"refresh rejected: {exc.record.message}")
                raise SessionExpiredError("Session expired; re-authenticate to continue") from exc
            except BaseException as exc:
                if self._status is TokenStatus.EXPIRED_TERMINAL:
                    raise SessionExpiredError("Session was revoked during refresh") from exc
                # transient failure: current credentials are unchanged
                self._status = TokenStatus.AUTHENTICATED
                raise

            if self._status is TokenStatus.EXPIRED_TERMINAL:
                # revoked while the refresh was in flight
                raise SessionExpiredError("Session was revoked during refresh")

            if state.kind is TokenKind.SIGNER_SESSION:
                # rotation: the previous refresh token is dead from here on
                new_state = replace(
                    state,
                    access_token=grant.access_token,
                    access_expires_at=grant.access_expires_at,
                    refresh_token=grant.refresh_token,
                    refresh_expires_at=grant.refresh_expires_at,
                )
            else:
                new_state = replace(
                    state,
                    access_token=grant.access_token,
                    access_expires_at=grant.access_expires_at,
                )
                if grant.refresh_token:
                    new_state = replace(
                        new_state,
                        refresh_token=grant.refresh_token,
                        refresh_expires_at=grant.refresh_expires_at,
                    )
            self.set_state(new_state)
            return new_state
        finally:
            self._refresh_task = None

    def get_auth_header(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
