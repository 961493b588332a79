"""In-process backends: an expiring key-value map and a similarity index.

Used by tests and single-process deployments that do not need state to
survive a restart.
"""

from __future__ import annotations

import time
from typing import Callable

from ..core.embeddings import Embedder
from ..core.math_utils import cosine_distance
from ..types import SimilarityHit
from .helpers import matches_where


class MemoryKeyValueStore:
    """Expiring string map with Redis-like ``set`` / ``expire`` semantics.

    ``set`` clears any pending expiry (as Redis ``SET`` does); ``expire``
    schedules one relative to the injected clock.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._data: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}

    def _evict_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._evict_if_expired(key)
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._expires_at.pop(key, None)

    async def expire(self, key: str, seconds: int) -> None:
        self._evict_if_expired(key)
        if key in self._data:
            self._expires_at[key] = self._clock() + seconds

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires_at.pop(key, None)

    async def ttl(self, key: str) -> float | None:
        """Seconds until *key* expires; ``None`` if absent or persistent."""
        self._evict_if_expired(key)
        deadline = self._expires_at.get(key)
        if key not in self._data or deadline is None:
            return None
        return deadline - self._clock()

    def keys(self) -> list[str]:
        for key in list(self._data):
            self._evict_if_expired(key)
        return sorted(self._data)

    async def aclose(self) -> None:
        self._data.clear()
        self._expires_at.clear()


class MemorySimilarityBackend:
    """Nearest-neighbor search over embedded documents held in a dict."""

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder
        # entry_id -> (document, metadata, embedding)
        self._entries: dict[str, tuple[str, dict, list[float]]] = {}

    async def upsert(self, entry_id: str, text: str, metadata: dict) -> None:
        embedding = await self.embedder.embed_one(text)
        self._entries[entry_id] = (text, dict(metadata), embedding)

    async def query(self, where: dict, text: str, limit: int) -> list[SimilarityHit]:
        candidates = [
            (doc, meta, emb)
            for doc, meta, emb in self._entries.values()
            if matches_where(meta, where)
        ]
        if not candidates or limit <= 0:
            return []
        query_vec = await self.embedder.embed_one(text)
        scored = [
            SimilarityHit(metadata=dict(meta), distance=cosine_distance(query_vec, emb), document=doc)
            for doc, meta, emb in candidates
        ]
        scored.sort(key=lambda h: h.distance)
        return scored[:limit]

    async def get_where(self, where: dict) -> list[SimilarityHit]:
        return [
            SimilarityHit(metadata=dict(meta), distance=0.0, document=doc)
            for doc, meta, _ in self._entries.values()
            if matches_where(meta, where)
        ]

    async def delete_where(self, where: dict) -> int:
        doomed = [eid for eid, (_, meta, _) in self._entries.items() if matches_where(meta, where)]
        for eid in doomed:
            del self._entries[eid]
        return len(doomed)

    async def aclose(self) -> None:
        self._entries.clear()
