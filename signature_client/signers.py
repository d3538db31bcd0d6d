from typing import Any, Dict, List, Optional

from .config import API_ROOT, SIGNER_REFRESH_PATH, SIGNER_REVOKE_PATH
from .pipeline import RequestPipeline


class SignersAPI:
    """
    Signer endpoints, including issuance of signing URLs and the
    signer-session token pair endpoints.
    """

    def __init__(self, pipeline: RequestPipeline):
        self._pipeline = pipeline

    async def create(self, envelope_id: str, *, name: str, email: str, **fields: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": name, "email": email}
        body.update(fields)
        return await self._pipeline.post(f"{API_ROOT}/envelopes/{envelope_id}/signers", json=body)

    async def list_for_envelope(self, envelope_id: str, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._pipeline.get(
            f"{API_ROOT}/envelopes/{envelope_id}/signers", params={"status": status}
        )

    async def get(self, signer_id: str) -> Dict[str, Any]:
        return await self._pipeline.get(f"{API_ROOT}/signers/{signer_id}")

    async def update(self, signer_id: str, **fields: Any) -> Dict[str, Any]:
        return await self._pipeline.put(f"{API_ROOT}/signers/{signer_id}", json=fields)

    async def delete(self, signer_id: str) -> None:
        await self._pipeline.delete(f"{API_ROOT}/signers/{signer_id}")

    async def get_signing_url(self, signer_id: str) -> Dict[str, Any]:
        """
        Issue a signing URL. The payload carries a fresh signer-session token
        pair (``accessToken``, ``refreshToken``, ``expiresAt``,
        ``refreshExpiresAt``); pass it to ``SignatureClient.signer_session``.
        """
        return await self._pipeline.get(f"{API_ROOT}/signers/{signer_id}/signing-url")

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a signer refresh token for a new, rotated pair.

        Sent once and never replayed: the server retires ``refresh_token`` as
        soon as it answers, so a resend after a lost response would be refused.
        """
        return await self._pipeline.post(
            SIGNER_REFRESH_PATH, json={"refreshToken": refresh_token}, authenticate=False, retry=False
        )

    async def revoke_token(self, refresh_token: str) -> Dict[str, Any]:
        return await self._pipeline.post(
            SIGNER_REVOKE_PATH, json={"refreshToken": refresh_token}, authenticate=False
        )
