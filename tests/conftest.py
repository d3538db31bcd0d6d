import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

BASE_URL = "https://sign.example.test"
START = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep: records each delay and advances the clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


def iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class FakeSigningServer:
    """In-memory stand-in for the signing API, served through httpx.MockTransport."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.requests: List[httpx.Request] = []
        self.refresh_calls = 0
        self.revoke_calls = 0
        self.api_tokens = {"org-api-token"}
        self.access_tokens = {"signer-access-0"}
        self.refresh_tokens = {"signer-refresh-0"}
        self.envelopes: Dict[str, Dict[str, Any]] = {"env-1": {"id": "env-1", "name": "Contract"}}
        self.versions: Dict[str, int] = {"env-1": 1}
        self.signers: Dict[str, Dict[str, Any]] = {"s-1": {"id": "s-1", "name": "Ana", "envelopeId": "env-1"}}
        self.refresh_outage = False
        self._issued = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BASE_URL, transport=self.transport)

    def api_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith(("refresh-token", "revoke-token"))]

    # ---------- handler ----------
    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path == "/api/v1/signers/refresh-token" and method == "POST":
            return await self._refresh(request)
        if path == "/api/v1/signers/revoke-token" and method == "POST":
            body = json.loads(request.content)
            self.revoke_calls += 1
            self.refresh_tokens.discard(body["refreshToken"])
            return httpx.Response(200, json={"revoked": True, "message": "Token revoked"})
        if path == "/api/v1/auth/login" and method == "POST":
            return httpx.Response(
                200,
                json={
                    "user": {"id": "u-1", "email": "ops@example.test"},
                    "tokens": {"accessToken": "org-jwt-1", "refreshToken": "org-refresh-1", "expiresIn": 900},
                },
            )
        if path == "/api/v1/health":
            return httpx.Response(200, json={"status": "healthy"})
        if path == "/api/v1/health/ready":
            return httpx.Response(200, json={"status": "ready", "checks": {"database": "ok"}})
        if path == "/api/v1/health/live":
            return httpx.Response(200, json={"status": "alive"})

        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else None
        if token not in self.api_tokens and token not in self.access_tokens and token != "org-jwt-1":
            return httpx.Response(401, json={"message": "Invalid or expired token"})

        parts = [p for p in path.split("/") if p][2:]  # drop api/v1
        if parts[0] == "envelopes" and len(parts) == 2:
            return self._envelope(request, parts[1])
        if parts[0] == "signers" and len(parts) == 2 and method == "GET":
            signer = self.signers.get(parts[1])
            if signer is None:
                return httpx.Response(404, json={"message": "Signer not found"})
            return httpx.Response(200, json=signer)
        return httpx.Response(404, json={"message": "Route not found"})

    def _envelope(self, request: httpx.Request, envelope_id: str) -> httpx.Response:
        if envelope_id not in self.envelopes:
            return httpx.Response(404, json={"message": "Envelope not found"})
        if request.method == "PUT":
            self.envelopes[envelope_id].update(json.loads(request.content))
            self.versions[envelope_id] += 1
            return httpx.Response(200, json=self.envelopes[envelope_id])
        etag = f'"{envelope_id}-v{self.versions[envelope_id]}"'
        if request.headers.get("If-None-Match") == etag:
            return httpx.Response(304, headers={"ETag": etag})
        return httpx.Response(200, json=self.envelopes[envelope_id], headers={"ETag": etag})

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        self.refresh_calls += 1
        await asyncio.sleep(0)
        if self.refresh_outage:
            raise httpx.ConnectError("refresh endpoint unreachable", request=request)
        presented = json.loads(request.content)["refreshToken"]
        if presented not in self.refresh_tokens:
            return httpx.Response(401, json={"message": "Refresh token invalid or already used"})
        self._issued += 1
        # rotation: the presented refresh token dies with this exchange
        self.refresh_tokens.discard(presented)
        access, refresh = f"signer-access-{self._issued}", f"signer-refresh-{self._issued}"
        self.access_tokens.add(access)
        self.refresh_tokens.add(refresh)
        return httpx.Response(
            200,
            json={
                "accessToken": access,
                "refreshToken": refresh,
                "expiresIn": 900,
                "accessExpiresAt": iso(self.clock.now + 900),
                "refreshExpiresAt": iso(self.clock.now + 7 * 24 * 3600),
            },
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def server(clock: FakeClock) -> FakeSigningServer:
    return FakeSigningServer(clock)
