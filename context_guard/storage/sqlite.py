"""SQLiteSimilarityBackend: persistent similarity index using stdlib sqlite3."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from ..core.embeddings import Embedder
from ..core.math_utils import cosine_distance
from ..types import SimilarityHit, StoreError
from .helpers import dt_to_str, matches_where

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS similarity_entries (
    id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL DEFAULT '',
    document TEXT NOT NULL DEFAULT '',
    metadata_json TEXT NOT NULL DEFAULT '{}',
    embedding_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_similarity_thread_id ON similarity_entries(thread_id);
CREATE INDEX IF NOT EXISTS idx_similarity_created_at ON similarity_entries(created_at);
"""


def _row_to_hit(row: sqlite3.Row, distance: float = 0.0) -> SimilarityHit:
    return SimilarityHit(
        metadata=json.loads(row["metadata_json"]),
        distance=distance,
        document=row["document"],
    )


class SQLiteSimilarityBackend:
    """Embeddings stored as JSON, cosine distance computed in Python.

    A ``thread_id`` key in the filter is pushed down to an indexed column;
    any other keys are matched against the stored metadata.
    """

    def __init__(self, db_path: str | Path, embedder: Embedder) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.embedder = embedder
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def _select(self, where: dict) -> list[sqlite3.Row]:
        conn = self._get_conn()
        if "thread_id" in where:
            rows = conn.execute(
                "SELECT * FROM similarity_entries WHERE thread_id = ? ORDER BY created_at",
                (str(where["thread_id"]),),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM similarity_entries ORDER BY created_at"
            ).fetchall()
        return [r for r in rows if matches_where(json.loads(r["metadata_json"]), where)]

    # -- blocking bodies, run via asyncio.to_thread --

    def _upsert_sync(self, entry_id: str, text: str, metadata: dict, embedding: list[float]) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT OR REPLACE INTO similarity_entries
                (id, thread_id, document, metadata_json, embedding_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry_id,
                    str(metadata.get("thread_id", "")),
                    text,
                    json.dumps(metadata, ensure_ascii=False, default=str),
                    json.dumps(embedding),
                    dt_to_str(datetime.now(timezone.utc)),
                ),
            )
            conn.commit()

    def _query_sync(self, where: dict, query_vec: list[float], limit: int) -> list[SimilarityHit]:
        with self._lock:
            rows = self._select(where)
        hits = [
            _row_to_hit(r, cosine_distance(query_vec, json.loads(r["embedding_json"])))
            for r in rows
        ]
        hits.sort(key=lambda h: h.distance)
        return hits[:limit]

    def _get_where_sync(self, where: dict) -> list[SimilarityHit]:
        with self._lock:
            return [_row_to_hit(r) for r in self._select(where)]

    def _delete_where_sync(self, where: dict) -> int:
        with self._lock:
            ids = [r["id"] for r in self._select(where)]
            conn = self._get_conn()
            conn.executemany("DELETE FROM similarity_entries WHERE id = ?", [(i,) for i in ids])
            conn.commit()
            return len(ids)

    # -- SimilarityBackend --

    async def upsert(self, entry_id: str, text: str, metadata: dict) -> None:
        embedding = await self.embedder.embed_one(text)
        try:
            await asyncio.to_thread(self._upsert_sync, entry_id, text, metadata, embedding)
        except sqlite3.Error as e:
            raise StoreError(f"sqlite upsert failed: {e}") from e

    async def query(self, where: dict, text: str, limit: int) -> list[SimilarityHit]:
        if limit <= 0:
            return []
        query_vec = await self.embedder.embed_one(text)
        try:
            return await asyncio.to_thread(self._query_sync, where, query_vec, limit)
        except sqlite3.Error as e:
            raise StoreError(f"sqlite query failed: {e}") from e

    async def get_where(self, where: dict) -> list[SimilarityHit]:
        try:
            return await asyncio.to_thread(self._get_where_sync, where)
        except sqlite3.Error as e:
            raise StoreError(f"sqlite read failed: {e}") from e

    async def delete_where(self, where: dict) -> int:
        try:
            return await asyncio.to_thread(self._delete_where_sync, where)
        except sqlite3.Error as e:
            raise StoreError(f"sqlite delete failed: {e}") from e

    def count(self) -> int:
        with self._lock:
            return self._get_conn().execute(
                "SELECT COUNT(*) FROM similarity_entries"
            ).fetchone()[0]

    async def aclose(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
