"""
RequestPipeline - the single path every outbound call takes.

Per attempt: circuit check -> bearer token -> conditional-validator header
-> transport -> classify. Attempts are driven by the retry policy; on
success the ETag cache is updated (GET) or invalidated (mutations).
"""

import asyncio
import copy
import time
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
from loguru import logger

from .auth import TokenManager
from .cache import CacheEntry, CacheStore, invalidation_prefixes, make_cache_key
from .circuit import CircuitBreaker, CircuitBreakerRegistry, endpoint_group, trips_breaker
from .config import API_ROOT, MUTATING_METHODS
from .exceptions import ErrorKind, ErrorRecord, UnknownError
from .retry import RetryPolicy, run_with_retry
from .utils import classify_response, classify_transport_error, error_from_record


def decode_body(resp: httpx.Response) -> Any:
    if resp.status_code == 204 or not resp.content:
        return None
    content_type = resp.headers.get("Content-Type", "")
    if "json" in content_type:
        try:
            return resp.json()
        except ValueError as exc:
            raise UnknownError(
                record=ErrorRecord(
                    kind=ErrorKind.UNKNOWN,
                    message=f"Malformed JSON in {resp.status_code} response: {exc}",
                    http_status=resp.status_code,
                    code="INVALID_RESPONSE_BODY",
                )
            ) from exc
    if content_type.startswith("text/"):
        return resp.text
    return resp.content


class RequestPipeline:
    """
    Owns the per-client resilience state: token manager, ETag cache and
    circuit breakers are injected and never shared between clients.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        tokens: Optional[TokenManager] = None,
        cache: Optional[CacheStore] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        api_root: str = API_ROOT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.http = http
        self.tokens = tokens
        self.cache = cache
        self.breakers = breakers
        self.retry_policy = retry_policy or RetryPolicy()
        self.api_root = api_root
        self._sleep = sleep
        self._clock = clock

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        authenticate: bool = True,
        timeout: Optional[float] = None,
        retry: bool = True,
    ) -> Any:
        """Send one logical request.

        ``retry=False`` makes exactly one attempt. Token refresh calls use it:
        they already run inside the attempt of the request that needed the
        token, and that request's retry loop covers them.
        """
        method = method.upper()
        clean_params = {k: v for k, v in (params or {}).items() if v is not None} or None
        cache_key = None
        if method == "GET" and self.cache is not None:
            cache_key = make_cache_key(method, path, clean_params)

        async def attempt() -> Any:
            return await self._attempt(
                method,
                path,
                params=clean_params,
                json=json,
                headers=headers,
                authenticate=authenticate,
                timeout=timeout,
                cache_key=cache_key,
            )

        policy = self.retry_policy if retry else replace(self.retry_policy, max_retries=0)
        return await run_with_retry(
            attempt,
            policy,
            sleep=self._sleep,
            clock=self._clock,
            description=f"{method} {path}",
        )

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    # ---------- single attempt ----------
    async def _attempt(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]],
        json: Any,
        headers: Optional[Dict[str, str]],
        authenticate: bool,
        timeout: Optional[float],
        cache_key: Optional[str],
    ) -> Any:
        breaker: Optional[CircuitBreaker] = None
        if self.breakers is not None:
            breaker = self.breakers.get(endpoint_group(path, self.api_root))
            breaker.before_call()

        try:
            req_headers = {"X-Request-ID": uuid.uuid4().hex}
            if headers:
                req_headers.update(headers)
            if authenticate and self.tokens is not None:
                token = await self.tokens.get_valid_token()
                req_headers.update(self.tokens.get_auth_header(token))

            entry = self.cache.lookup(cache_key) if (self.cache is not None and cache_key) else None
            if entry is not None:
                req_headers["If-None-Match"] = entry.etag

            kwargs: Dict[str, Any] = {"params": params, "headers": req_headers}
            if json is not None:
                kwargs["json"] = json
            if timeout is not None:
                kwargs["timeout"] = timeout

            logger.debug(f"{method} {path}")
            resp = await self.http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            if breaker is not None:
                breaker.record_failure()
            raise error_from_record(classify_transport_error(exc)) from exc
        except BaseException:
            # nothing reached the service (token failure, cancellation)
            if breaker is not None:
                breaker.release()
            raise

        if resp.status_code == 304 and entry is not None:
            if breaker is not None:
                breaker.record_success()
            assert self.cache is not None and cache_key is not None
            self.cache.put(cache_key, replace(entry, fetched_at=self._clock()))
            logger.debug(f"Cache hit for {path} (304 Not Modified)")
            return copy.deepcopy(entry.body)

        if not resp.is_success:
            record = classify_response(resp, now=self._clock())
            if breaker is not None:
                if trips_breaker(record.kind):
                    breaker.record_failure()
                else:
                    breaker.record_success()
            raise error_from_record(record)

        if breaker is not None:
            breaker.record_success()
        body = decode_body(resp)
        self._update_cache(method, path, cache_key, resp, body)
        return body

    def _update_cache(
        self,
        method: str,
        path: str,
        cache_key: Optional[str],
        resp: httpx.Response,
        body: Any,
    ) -> None:
        if self.cache is None:
            return
        if cache_key is not None and resp.status_code == 200:
            etag = resp.headers.get("ETag")
            if etag:
                self.cache.put(
                    cache_key,
                    CacheEntry(
                        key=cache_key,
                        path=path,
                        etag=etag,
                        body=copy.deepcopy(body),
                        content_type=resp.headers.get("Content-Type"),
                        fetched_at=self._clock(),
                    ),
                )
                logger.debug(f"Cached {path} with ETag {etag}")
            else:
                self.cache.discard(cache_key)
        elif method in MUTATING_METHODS:
            for prefix in invalidation_prefixes(path, self.api_root):
                self.cache.invalidate_prefix(prefix)
