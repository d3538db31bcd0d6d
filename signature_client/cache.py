"""
In-memory ETag cache for conditional GETs.

Entries are keyed by a stable hash of (method, path, query) and are only ever
created for GET responses that carried an ETag. There is no age-based expiry:
every read is revalidated with the server via If-None-Match.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from .config import API_ROOT, DEFAULT_CACHE_MAX_SIZE


@dataclass
class CacheEntry:
    key: str
    path: str
    etag: str
    body: Any
    content_type: Optional[str]
    fetched_at: float


def make_cache_key(method: str, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Stable fingerprint of a request; query parameter order does not matter."""
    query = sorted((str(k), str(v)) for k, v in (params or {}).items() if v is not None)
    raw = json.dumps([method.upper(), path, query], separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def invalidation_prefixes(path: str, api_root: str = API_ROOT) -> List[str]:
    """Path prefixes to drop after a successful mutation of ``path``.

    The parent resource (or the collection itself for a top-level path) and
    the innermost collection re-rooted at the API root, e.g. a POST to
    ``/api/v1/envelopes/1/documents`` yields ``/api/v1/envelopes/1`` and
    ``/api/v1/documents``.
    """
    path = path.rstrip("/") or "/"
    root = api_root.rstrip("/")
    if root and path.startswith(root + "/"):
        relative = path[len(root):]
    else:
        root, relative = "", path
    segments = [s for s in relative.split("/") if s]
    if not segments:
        return [path]

    if len(segments) == 1:
        parent = path
    else:
        parent = f"{root}/" + "/".join(segments[:-1])
    prefixes = [parent]

    # segments alternate collection/id: the innermost collection has the
    # highest even index
    collection = segments[(len(segments) - 1) // 2 * 2]
    top_level = f"{root}/{collection}"
    if top_level not in prefixes:
        prefixes.append(top_level)
    return prefixes


class CacheStore:
    """
    Request fingerprint -> CacheEntry. Owned by a single client instance.
    Once ``max_size`` is reached the oldest entry is evicted first.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_MAX_SIZE):
        self.max_size = max_size
        self._entries: Dict[str, CacheEntry] = {}

    def lookup(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        if key in self._entries:
            # re-insert so eviction order follows the latest write
            del self._entries[key]
        elif self.max_size and len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            logger.debug(f"Cache evicting oldest entry for {self._entries[oldest].path}")
            del self._entries[oldest]
        self._entries[key] = entry

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, path_prefix: str) -> int:
        stale = [k for k, e in self._entries.items() if e.path.startswith(path_prefix)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Cache invalidated {len(stale)} entries under {path_prefix}")
        return len(stale)

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.debug(f"Cache cleared {size} entries")

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "max_size": self.max_size}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
