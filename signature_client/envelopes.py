from typing import Any, Dict, Optional

from .config import API_ROOT
from .pipeline import RequestPipeline


class EnvelopesAPI:
    """
    Envelope endpoints. Pure pass-through: bodies are sent and returned as dicts.
    """

    def __init__(self, pipeline: RequestPipeline):
        self._pipeline = pipeline

    def _path(self, *parts: str) -> str:
        return "/".join((f"{API_ROOT}/envelopes",) + parts)

    async def create(self, *, name: str, **fields: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": name}
        body.update(fields)
        return await self._pipeline.post(self._path(), json=body)

    async def list(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"page": page, "limit": limit, "status": status, "search": search}
        return await self._pipeline.get(self._path(), params=params)

    async def get(self, envelope_id: str) -> Dict[str, Any]:
        return await self._pipeline.get(self._path(envelope_id))

    async def update(self, envelope_id: str, **fields: Any) -> Dict[str, Any]:
        return await self._pipeline.put(self._path(envelope_id), json=fields)

    async def delete(self, envelope_id: str) -> None:
        await self._pipeline.delete(self._path(envelope_id))

    async def activate(self, envelope_id: str) -> Dict[str, Any]:
        return await self._pipeline.post(self._path(envelope_id, "activate"))

    async def cancel(self, envelope_id: str, *, reason: Optional[str] = None) -> Dict[str, Any]:
        body = {"reason": reason} if reason is not None else {}
        return await self._pipeline.post(self._path(envelope_id, "cancel"), json=body)
