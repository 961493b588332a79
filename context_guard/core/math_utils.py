"""Vector math for the similarity backends."""

from __future__ import annotations


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(x * x for x in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def cosine_distance(a: list[float], b: list[float]) -> float:
    """``1 - cosine_similarity``: 0 for identical direction, up to 2 for opposite."""
    return 1.0 - cosine_similarity(a, b)


def resize_vector(vector: list[float], size: int) -> list[float]:
    """Resample or zero-pad *vector* to exactly *size* entries."""
    if len(vector) == size:
        return list(vector)
    if not vector:
        return [0.0] * size
    if len(vector) > size:
        if size == 1:
            return [vector[0]]
        last = len(vector) - 1
        return [vector[min(round(i * last / (size - 1)), last)] for i in range(size)]
    return list(vector) + [0.0] * (size - len(vector))
