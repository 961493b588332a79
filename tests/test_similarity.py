"""Tests for the thread-scoped similarity index and its backends."""

import pytest

from context_guard.core.similarity import SimilarityIndex, format_document
from context_guard.storage.memory import MemorySimilarityBackend
from context_guard.storage.sqlite import SQLiteSimilarityBackend
from context_guard.types import SimilarityHit


async def _seed(index: SimilarityIndex) -> None:
    await index.index("a", "1", "rain umbrella forecast tomorrow", "Bring an umbrella, rain is likely.")
    await index.index("a", "2", "python list comprehension syntax", "Use [x for x in items].")
    await index.index("a", "3", "best pizza toppings", "Mushroom and basil are popular.")
    await index.index("b", "1", "rain umbrella forecast tomorrow", "Thread b answer.")


class TestSimilarityIndex:
    @pytest.mark.asyncio
    async def test_query_returns_most_similar_first(self, embedder):
        index = SimilarityIndex(MemorySimilarityBackend(embedder))
        await _seed(index)

        results = await index.query("a", "rain umbrella forecast tomorrow")
        assert results[0].user_message == "rain umbrella forecast tomorrow"
        assert results[0].bot_response == "Bring an umbrella, rain is likely."
        distances = [r.distance for r in results]
        assert distances == sorted(distances)

    @pytest.mark.asyncio
    async def test_query_never_crosses_threads(self, embedder):
        index = SimilarityIndex(MemorySimilarityBackend(embedder))
        await _seed(index)

        results = await index.query("b", "pizza python rain", limit=5)
        assert [r.bot_response for r in results] == ["Thread b answer."]
        assert await index.query("c", "anything") == []

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, embedder):
        backend = MemorySimilarityBackend(embedder)
        index = SimilarityIndex(backend, default_limit=0)
        for i in range(7):
            await index.index("a", str(i), f"question {i}", f"answer {i}")

        assert index.default_limit == 1
        assert len(await index.query("a", "question")) == 1
        assert len(await index.query("a", "question", limit=10)) == 5

    @pytest.mark.asyncio
    async def test_index_metadata(self, embedder):
        backend = MemorySimilarityBackend(embedder)
        index = SimilarityIndex(backend)
        entry = await index.index("a", None, "q", "r")

        assert entry.turn_id
        hits = await backend.get_where({"thread_id": "a"})
        assert len(hits) == 1
        meta = hits[0].metadata
        assert meta["turn_id"] == entry.turn_id
        assert meta["user_message"] == "q" and meta["bot_response"] == "r"
        assert meta["timestamp"]
        assert hits[0].document == format_document("q", "r")

    @pytest.mark.asyncio
    async def test_leaky_backend_results_are_discarded(self):
        class LeakyBackend:
            async def query(self, where, text, limit):
                return [
                    SimilarityHit(metadata={"thread_id": "other", "user_message": "x"}, distance=0.1),
                    SimilarityHit(metadata={"thread_id": "a", "user_message": "mine"}, distance=0.2),
                ]

        results = await SimilarityIndex(LeakyBackend()).query("a", "q")
        assert [r.user_message for r in results] == ["mine"]

    @pytest.mark.asyncio
    async def test_list_thread_and_purge(self, embedder):
        index = SimilarityIndex(MemorySimilarityBackend(embedder))
        await _seed(index)

        listed = await index.list_thread("a")
        assert [c.turn_id for c in listed] == ["1", "2", "3"]
        assert await index.purge("a") == 3
        assert await index.list_thread("a") == []
        assert len(await index.list_thread("b")) == 1


class TestSQLiteSimilarityBackend:
    @pytest.mark.asyncio
    async def test_upsert_and_query(self, tmp_sqlite_db, embedder):
        backend = SQLiteSimilarityBackend(tmp_sqlite_db, embedder)
        index = SimilarityIndex(backend)
        await _seed(index)

        assert backend.count() == 4
        results = await index.query("a", "best pizza toppings")
        assert results[0].bot_response == "Mushroom and basil are popular."
        assert all(r.turn_id in ("1", "2", "3") for r in results)
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_upsert_replaces_same_id(self, tmp_sqlite_db, embedder):
        backend = SQLiteSimilarityBackend(tmp_sqlite_db, embedder)
        await backend.upsert("a-1", "doc one", {"thread_id": "a", "turn_id": "1"})
        await backend.upsert("a-1", "doc two", {"thread_id": "a", "turn_id": "1"})

        hits = await backend.get_where({"thread_id": "a"})
        assert [h.document for h in hits] == ["doc two"]
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_persists_across_reopen(self, tmp_sqlite_db, embedder):
        backend = SQLiteSimilarityBackend(tmp_sqlite_db, embedder)
        await SimilarityIndex(backend).index("a", "1", "q", "r")
        await backend.aclose()

        reopened = SQLiteSimilarityBackend(tmp_sqlite_db, embedder)
        listed = await SimilarityIndex(reopened).list_thread("a")
        assert [(c.user_message, c.bot_response) for c in listed] == [("q", "r")]
        await reopened.aclose()

    @pytest.mark.asyncio
    async def test_delete_where_scoped_to_thread(self, tmp_sqlite_db, embedder):
        backend = SQLiteSimilarityBackend(tmp_sqlite_db, embedder)
        index = SimilarityIndex(backend)
        await _seed(index)

        assert await backend.delete_where({"thread_id": "a"}) == 3
        assert backend.count() == 1
        assert await backend.query({"thread_id": "a"}, "rain", 3) == []
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_in_memory_database(self, embedder):
        backend = SQLiteSimilarityBackend(":memory:", embedder)
        await backend.upsert("x-1", "doc", {"thread_id": "x"})
        assert backend.count() == 1
        await backend.aclose()
