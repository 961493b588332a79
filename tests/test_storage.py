"""Tests for the key-value backends and storage helpers."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from context_guard.storage.helpers import history_key, matches_where, str_to_dt, summary_key
from context_guard.storage.memory import MemoryKeyValueStore
from context_guard.storage.redis_store import RedisKeyValueStore
from context_guard.types import StoreError


class TestMemoryKeyValueStore:
    @pytest.mark.asyncio
    async def test_get_set_delete(self, kv):
        assert await kv.get("k") is None
        await kv.set("k", "v")
        assert await kv.get("k") == "v"
        await kv.delete("k")
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_expire(self, kv, clock):
        await kv.set("k", "v")
        await kv.expire("k", 10)
        clock.advance(9.9)
        assert await kv.get("k") == "v"
        clock.advance(0.1)
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_set_clears_expiry(self, kv, clock):
        await kv.set("k", "v")
        await kv.expire("k", 10)
        await kv.set("k", "v2")
        assert await kv.ttl("k") is None
        clock.advance(100)
        assert await kv.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_expire_missing_key_is_noop(self, kv):
        await kv.expire("missing", 10)
        assert await kv.ttl("missing") is None
        assert kv.keys() == []

    @pytest.mark.asyncio
    async def test_keys_skips_expired(self, kv, clock):
        await kv.set("a", "1")
        await kv.set("b", "2")
        await kv.expire("a", 5)
        clock.advance(6)
        assert kv.keys() == ["b"]


class _BrokenRedis:
    """Client double whose every command fails like an unreachable server."""

    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    ping = get = set = expire = delete = _fail

    async def aclose(self):
        pass


class _DictRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def expire(self, key, seconds):
        self.ttls[key] = seconds

    async def delete(self, key):
        self.data.pop(key, None)

    async def aclose(self):
        pass


class TestRedisKeyValueStore:
    @pytest.mark.asyncio
    async def test_round_trip_through_client(self):
        client = _DictRedis()
        store = RedisKeyValueStore(client=client)
        await store.connect()
        await store.set("k", "v")
        await store.expire("k", 60)
        assert await store.get("k") == "v"
        assert client.ttls == {"k": 60}
        await store.delete("k")
        assert await store.get("k") is None
        await store.aclose()

    @pytest.mark.asyncio
    async def test_decodes_bytes(self):
        client = _DictRedis()
        client.data["k"] = "안녕".encode("utf-8")
        assert await RedisKeyValueStore(client=client).get("k") == "안녕"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("op,args", [
        ("connect", ()),
        ("get", ("k",)),
        ("set", ("k", "v")),
        ("expire", ("k", 1)),
        ("delete", ("k",)),
    ])
    async def test_errors_become_store_errors(self, op, args):
        store = RedisKeyValueStore(client=_BrokenRedis())
        with pytest.raises(StoreError):
            await getattr(store, op)(*args)


class TestHelpers:
    def test_keys(self):
        assert history_key("thread", "42") == "thread:42:history"
        assert summary_key("bot", "42") == "bot:42:summary"

    def test_matches_where(self):
        assert matches_where({"thread_id": "a", "x": 1}, {"thread_id": "a"})
        assert not matches_where({"thread_id": "b"}, {"thread_id": "a"})
        assert matches_where({}, {})

    def test_naive_timestamps_read_as_utc(self):
        assert str_to_dt("2026-10-18T05:00:00").tzinfo is not None
