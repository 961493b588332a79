"""RedisKeyValueStore: expiring key-value backend over ``redis.asyncio``."""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..types import StoreError

logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    """Thin async wrapper translating ``RedisError`` into ``StoreError``.

    One client per process: construct at startup, ``aclose()`` on shutdown.
    """

    def __init__(self, url: str = "redis://localhost:6379", client: redis.Redis | None = None) -> None:
        self.url = url
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    async def connect(self) -> None:
        """Verify connectivity. Raises StoreError when the server is unreachable."""
        await self.ping()
        logger.info("Connected to redis at %s", self.url)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            raise StoreError(f"redis ping failed: {e}") from e

    async def get(self, key: str) -> str | None:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            raise StoreError(f"redis GET {key} failed: {e}") from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(key, value)
        except RedisError as e:
            raise StoreError(f"redis SET {key} failed: {e}") from e

    async def expire(self, key: str, seconds: int) -> None:
        try:
            await self.client.expire(key, seconds)
        except RedisError as e:
            raise StoreError(f"redis EXPIRE {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise StoreError(f"redis DEL {key} failed: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
