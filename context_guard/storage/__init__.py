from .memory import MemoryKeyValueStore, MemorySimilarityBackend
from .redis_store import RedisKeyValueStore
from .sqlite import SQLiteSimilarityBackend

__all__ = [
    "MemoryKeyValueStore",
    "MemorySimilarityBackend",
    "RedisKeyValueStore",
    "SQLiteSimilarityBackend",
]
