"""Embedder: sentence-transformers vectors with a deterministic fallback.

The primary embedding function is loaded lazily. When the model cannot be
loaded or encoding fails, texts are embedded with a hashed bag-of-words
vector instead so indexing never blocks a turn. Retrieval quality drops
when that happens; every degraded call is logged and counted in
``Embedder.fallback_count``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from typing import Callable

from .math_utils import resize_vector

logger = logging.getLogger(__name__)

_EMBED_NOT_LOADED = object()  # sentinel for lazy embed function loading

EmbedFn = Callable[[list[str]], list[list[float]]]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def hashed_embedding(text: str, size: int = 384) -> list[float]:
    """Deterministic unit vector from word and character-bigram hashes.

    Bigrams keep agglutinative words (Korean stems plus particles) close to
    their bare forms.
    """
    vec = [0.0] * size
    features: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        features.append(token)
        if len(token) > 2:
            features.extend(token[i:i + 2] for i in range(len(token) - 1))
    for feature in features:
        digest = hashlib.md5(feature.encode("utf-8")).digest()
        idx = int.from_bytes(digest[:4], "big") % size
        sign = 1.0 if digest[4] & 1 else -1.0
        vec[idx] += sign
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        return vec
    return [v / norm for v in vec]


class Embedder:
    """Turns texts into fixed-length vectors for the similarity backends."""

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        vector_size: int = 384,
        embed_fn: EmbedFn | None = None,
    ) -> None:
        self.model_name = model_name
        self.vector_size = vector_size
        self.fallback_count = 0
        self._embed_fn = embed_fn if embed_fn is not None else _EMBED_NOT_LOADED

    def get_embed_fn(self) -> EmbedFn | None:
        """Lazy-load the sentence-transformers model.

        Returns ``None`` when sentence-transformers is not installed or the
        model cannot be loaded.
        """
        if self._embed_fn is _EMBED_NOT_LOADED:
            try:
                from sentence_transformers import SentenceTransformer

                model = SentenceTransformer(self.model_name)

                def embed(texts: list[str]) -> list[list[float]]:
                    return model.encode(
                        texts, convert_to_numpy=True, show_progress_bar=False,
                    ).tolist()

                self._embed_fn = embed
                logger.info("Loaded embedding model %s", self.model_name)
            except ImportError:
                logger.warning(
                    "sentence-transformers not installed, similarity search uses "
                    "hashed fallback embeddings (reduced retrieval quality)"
                )
                self._embed_fn = None
            except Exception:
                logger.warning(
                    "Failed to load embedding model %s, using hashed fallback embeddings",
                    self.model_name,
                    exc_info=True,
                )
                self._embed_fn = None
        return self._embed_fn

    @property
    def degraded(self) -> bool:
        return self.fallback_count > 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embed_fn = await asyncio.to_thread(self.get_embed_fn)
        if embed_fn is not None:
            try:
                vectors = await asyncio.to_thread(embed_fn, texts)
                return [resize_vector(v, self.vector_size) for v in vectors]
            except Exception as e:
                logger.warning("Embedding failed, using hashed fallback: %s", e)
        self.fallback_count += len(texts)
        return [hashed_embedding(t, self.vector_size) for t in texts]

    async def embed_one(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]
