"""SimilarityIndex: per-thread nearest-neighbor lookup over past exchanges."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from ..storage.helpers import dt_to_str
from ..types import SimilarConversation, SimilarityBackend, SimilarityEntry

logger = logging.getLogger(__name__)

MIN_LIMIT = 1
MAX_LIMIT = 5


def format_document(user_message: str, bot_response: str) -> str:
    return f"User: {user_message}\nAssistant: {bot_response}"


class SimilarityIndex:
    """Index and query exchanges, always scoped to one thread.

    Every backend call is filtered by ``thread_id`` and the results are
    re-checked here, so entries from another thread are never returned even
    when the backend ignores the filter.
    """

    def __init__(self, backend: SimilarityBackend, default_limit: int = 3) -> None:
        self.backend = backend
        self.default_limit = self._clamp(default_limit)

    @staticmethod
    def _clamp(limit: int) -> int:
        return max(MIN_LIMIT, min(MAX_LIMIT, int(limit)))

    async def index(
        self,
        thread_id: str,
        turn_id: str | None,
        user_message: str,
        bot_response: str,
    ) -> SimilarityEntry:
        entry = SimilarityEntry(
            thread_id=thread_id,
            turn_id=turn_id or uuid.uuid4().hex,
            user_message=user_message,
            bot_response=bot_response,
            timestamp=datetime.now(timezone.utc),
        )
        metadata = {
            "thread_id": entry.thread_id,
            "turn_id": entry.turn_id,
            "user_message": entry.user_message,
            "bot_response": entry.bot_response,
            "timestamp": dt_to_str(entry.timestamp),
        }
        await self.backend.upsert(
            f"{thread_id}-{entry.turn_id}",
            format_document(user_message, bot_response),
            metadata,
        )
        return entry

    async def query(self, thread_id: str, text: str, limit: int | None = None) -> list[SimilarConversation]:
        """Nearest exchanges in *thread_id*, most similar first."""
        n = self.default_limit if limit is None else self._clamp(limit)
        hits = await self.backend.query({"thread_id": thread_id}, text, n)

        results: list[SimilarConversation] = []
        for hit in hits:
            meta = hit.metadata or {}
            if meta.get("thread_id") != thread_id:
                logger.warning(
                    "Similarity backend returned an entry outside thread %s, discarded", thread_id,
                )
                continue
            results.append(SimilarConversation(
                user_message=str(meta.get("user_message", "")),
                bot_response=str(meta.get("bot_response", "")),
                distance=float(hit.distance),
                turn_id=str(meta.get("turn_id", "")),
                timestamp=str(meta.get("timestamp", "")),
            ))
        results.sort(key=lambda r: r.distance)
        return results[:n]

    async def list_thread(self, thread_id: str) -> list[SimilarConversation]:
        """Every indexed exchange of *thread_id*, oldest first."""
        hits = await self.backend.get_where({"thread_id": thread_id})
        results = [
            SimilarConversation(
                user_message=str(h.metadata.get("user_message", "")),
                bot_response=str(h.metadata.get("bot_response", "")),
                turn_id=str(h.metadata.get("turn_id", "")),
                timestamp=str(h.metadata.get("timestamp", "")),
            )
            for h in hits
            if h.metadata.get("thread_id") == thread_id
        ]
        results.sort(key=lambda r: r.timestamp)
        return results

    async def purge(self, thread_id: str) -> int:
        removed = await self.backend.delete_where({"thread_id": thread_id})
        logger.info("Purged %d similarity entries for thread %s", removed, thread_id)
        return removed
