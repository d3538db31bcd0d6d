import asyncio
import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .auth import TokenGrant, TokenKind, TokenManager, TokenState
from .cache import CacheStore
from .circuit import CircuitBreakerConfig, CircuitBreakerRegistry
from .config import (
    AUTH_LOGIN_PATH,
    AUTH_LOGOUT_PATH,
    AUTH_REFRESH_PATH,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_REFRESH_SKEW,
    DEFAULT_TIMEOUT,
    ENV_API_TOKEN,
    ENV_BASE_URL,
    ENV_TIMEOUT,
    HEALTH_LIVE_PATH,
    HEALTH_PATH,
    HEALTH_READY_PATH,
    USER_AGENT,
)
from .envelopes import EnvelopesAPI
from .pipeline import RequestPipeline
from .retry import RetryPolicy
from .signers import SignersAPI


class SignatureClient:
    """
    Top-level SDK entry point.
    - Holds httpx.AsyncClient
    - Owns one TokenManager, ETag cache and circuit registry (never shared)
    - Exposes EnvelopesAPI and SignersAPI

    An organization client is built from an API token, a JWT pair, or
    ``login()``. A signer-session client is derived from a signing-URL
    payload with ``signer_session()``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_token: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        access_expires_at: Optional[float] = None,
        refresh_expires_at: Optional[float] = None,
        token_kind: TokenKind = TokenKind.ORGANIZATION_HYBRID,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        enable_cache: bool = True,
        cache_max_size: int = DEFAULT_CACHE_MAX_SIZE,
        refresh_skew: float = DEFAULT_REFRESH_SKEW,
        http: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if api_token and access_token:
            raise ValueError("Pass either api_token or access_token, not both")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._circuit_config = circuit_config
        self._sleep = sleep
        self._clock = clock

        # Shared transport is only closed by the client that created it
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.http.headers.setdefault("Accept", "application/json")
        self.http.headers.setdefault("User-Agent", USER_AGENT)

        state = None
        if api_token:
            # long-lived: no schedule expiry, no refresh step
            state = TokenState(kind=token_kind, access_token=api_token)
        elif access_token:
            state = TokenState(
                kind=token_kind,
                access_token=access_token,
                access_expires_at=access_expires_at,
                refresh_token=refresh_token,
                refresh_expires_at=refresh_expires_at,
            )
        refresher = self._refresh_signer if token_kind is TokenKind.SIGNER_SESSION else self._refresh_organization
        self.tokens = TokenManager(state=state, refresher=refresher, refresh_skew=refresh_skew, clock=clock)

        self.cache = CacheStore(max_size=cache_max_size) if enable_cache else None
        self.breakers = CircuitBreakerRegistry(circuit_config, clock=clock)
        self.pipeline = RequestPipeline(
            http=self.http,
            tokens=self.tokens,
            cache=self.cache,
            breakers=self.breakers,
            retry_policy=retry_policy,
            sleep=sleep,
            clock=clock,
        )

        # APIs
        self.envelopes = EnvelopesAPI(self.pipeline)
        self.signers = SignersAPI(self.pipeline)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "SignatureClient":
        base_url = os.environ.get(ENV_BASE_URL)
        if not base_url:
            raise ValueError(f"{ENV_BASE_URL} is not set")
        kwargs.setdefault("api_token", os.environ.get(ENV_API_TOKEN) or None)
        if os.environ.get(ENV_TIMEOUT):
            kwargs.setdefault("timeout", float(os.environ[ENV_TIMEOUT]))
        return cls(base_url=base_url, **kwargs)

    # ---------- Credentials ----------
    def _swap_credentials(self, state: TokenState) -> None:
        self.tokens.set_state(state)
        # cached bodies may be scoped to the previous credential
        if self.cache is not None:
            self.cache.clear()

    def set_token(
        self,
        *,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
        refresh_expires_at: Optional[float] = None,
    ) -> TokenState:
        state = TokenState(
            kind=TokenKind.ORGANIZATION_HYBRID,
            access_token=access_token,
            access_expires_at=self._clock() + expires_in if expires_in is not None else None,
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
        )
        self._swap_credentials(state)
        return state

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        payload = await self.pipeline.post(
            AUTH_LOGIN_PATH, json={"email": email, "password": password}, authenticate=False
        )
        grant = TokenGrant.from_payload(payload["tokens"], now=self._clock())
        self._swap_credentials(
            TokenState(
                kind=TokenKind.ORGANIZATION_HYBRID,
                access_token=grant.access_token,
                access_expires_at=grant.access_expires_at,
                refresh_token=grant.refresh_token,
                refresh_expires_at=grant.refresh_expires_at,
            )
        )
        return payload

    async def refresh_token(self) -> TokenState:
        """Force a refresh now; joins one already in flight."""
        return await self.tokens.refresh()

    async def revoke(self) -> None:
        """
        Invalidate the refresh token server-side, then drop local tokens and
        cache. Local state is cleared even if the server call fails.
        """
        state = self.tokens.state
        try:
            if state is not None and state.refresh_token:
                if state.kind is TokenKind.SIGNER_SESSION:
                    await self.signers.revoke_token(state.refresh_token)
                else:
                    await self.pipeline.post(AUTH_LOGOUT_PATH, json={"refreshToken": state.refresh_token})
        finally:
            self.tokens.revoke()
            if self.cache is not None:
                self.cache.clear()

    logout = revoke

    async def _refresh_organization(self, state: TokenState) -> TokenGrant:
        payload = await self.pipeline.post(
            AUTH_REFRESH_PATH, json={"refreshToken": state.refresh_token}, authenticate=False, retry=False
        )
        return TokenGrant.from_payload(payload, now=self._clock())

    async def _refresh_signer(self, state: TokenState) -> TokenGrant:
        assert state.refresh_token is not None
        payload = await self.signers.refresh_token(state.refresh_token)
        return TokenGrant.from_payload(payload, now=self._clock())

    # ---------- Signer sessions ----------
    def signer_session(self, signing_url: Dict[str, Any]) -> "SignatureClient":
        """
        Build an independent client acting as the signer described by a
        ``signers.get_signing_url()`` payload. It reuses this client's
        transport but has its own tokens, cache and circuit state.
        """
        grant = TokenGrant.from_payload(signing_url, now=self._clock())
        return SignatureClient(
            base_url=self.base_url,
            access_token=grant.access_token,
            access_expires_at=grant.access_expires_at,
            refresh_token=grant.refresh_token,
            refresh_expires_at=grant.refresh_expires_at,
            token_kind=TokenKind.SIGNER_SESSION,
            timeout=self.timeout,
            retry_policy=self.pipeline.retry_policy,
            circuit_config=self._circuit_config,
            enable_cache=self.cache is not None,
            cache_max_size=self.cache.max_size if self.cache is not None else DEFAULT_CACHE_MAX_SIZE,
            refresh_skew=self.tokens.refresh_skew,
            http=self.http,
            sleep=self._sleep,
            clock=self._clock,
        )

    # ---------- Misc ----------
    async def health(self) -> Dict[str, Any]:
        return await self.pipeline.get(HEALTH_PATH, authenticate=False)

    async def health_ready(self) -> Dict[str, Any]:
        """Readiness probe: whether the service and its dependencies can take traffic."""
        return await self.pipeline.get(HEALTH_READY_PATH, authenticate=False)

    async def health_live(self) -> Dict[str, Any]:
        return await self.pipeline.get(HEALTH_LIVE_PATH, authenticate=False)

    # ---------- Cleanup ----------
    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "SignatureClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
