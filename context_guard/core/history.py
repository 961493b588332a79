"""HistoryStore: bounded, expiring record of (user, assistant) pairs per thread."""

from __future__ import annotations

import asyncio
import json
import logging
import weakref

from ..storage.helpers import history_key
from ..types import KeyValueStore, Message

logger = logging.getLogger(__name__)


def _valid_pairs(raw: object) -> list[Message]:
    """Longest even-length suffix of well-formed alternating entries."""
    if not isinstance(raw, list):
        return []
    entries: list[Message] = []
    for item in raw:
        if (
            isinstance(item, dict)
            and item.get("role") in ("user", "assistant")
            and isinstance(item.get("content"), str)
        ):
            entries.append(Message(role=item["role"], content=item["content"]))
        else:
            entries = []  # anything before a malformed entry is untrustworthy

    # Walk back from the end collecting (user, assistant) pairs
    kept: list[Message] = []
    i = len(entries) - 1
    while i >= 1 and entries[i].role == "assistant" and entries[i - 1].role == "user":
        kept[:0] = [entries[i - 1], entries[i]]
        i -= 2
    return kept


class HistoryStore:
    """Append-then-truncate history with refresh-on-write expiry.

    Appends on the same thread are serialized by a per-thread lock, which
    gives at-most-one writer per thread inside a process. Across processes
    the read-modify-write is last-writer-wins.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_pairs: int = 10,
        ttl_seconds: int = 86_400,
        key_prefix: str = "thread",
    ) -> None:
        self.kv = kv
        self.max_pairs = max_pairs
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        # Entries vanish once no coroutine holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _key(self, thread_id: str) -> str:
        return history_key(self.key_prefix, thread_id)

    def _lock(self, thread_id: str) -> asyncio.Lock:
        return self._locks.get(thread_id) or self._locks.setdefault(thread_id, asyncio.Lock())

    async def read(self, thread_id: str) -> list[Message]:
        """Ordered entries for *thread_id*; empty when absent or expired."""
        raw = await self.kv.get(self._key(thread_id))
        if not raw:
            return []
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable history for thread %s", thread_id)
            return []
        entries = _valid_pairs(decoded)
        if isinstance(decoded, list) and len(entries) != len(decoded):
            logger.warning(
                "History for thread %s had %d malformed or unpaired entries, dropped",
                thread_id, len(decoded) - len(entries),
            )
        return entries

    async def append(self, thread_id: str, user_text: str, bot_text: str) -> list[Message]:
        """Append one pair, truncate to the newest ``max_pairs``, refresh expiry."""
        async with self._lock(thread_id):
            entries = await self.read(thread_id)
            entries.append(Message(role="user", content=user_text))
            entries.append(Message(role="assistant", content=bot_text))
            entries = entries[-2 * self.max_pairs:]

            key = self._key(thread_id)
            await self.kv.set(
                key, json.dumps([m.to_dict() for m in entries], ensure_ascii=False),
            )
            await self.kv.expire(key, self.ttl_seconds)

        logger.debug("History for thread %s now holds %d entries", thread_id, len(entries))
        return entries

    async def clear(self, thread_id: str) -> None:
        async with self._lock(thread_id):
            await self.kv.delete(self._key(thread_id))

    async def last_pair(self, thread_id: str) -> tuple[str, str] | None:
        """The most recent (user, assistant) texts, or None on a fresh thread."""
        entries = await self.read(thread_id)
        if len(entries) < 2:
            return None
        return entries[-2].content, entries[-1].content
