from __future__ import annotations

import math
from typing import Sequence

from ..core.config import ConfigurationError


class DimensionMismatchError(ConfigurationError):
    """
    A vector's length differs from the configured embedding dimension.

    This is a schema/configuration problem (wrong model, wrong EMBEDDING_DIM,
    or a store created for another dimension), never a transient fault.
    """

    def __init__(self, expected: int, actual: int, what: str = "vector") -> None:
        super().__init__(
            f"{what} has dimension {actual}, expected {expected}. "
            "Check EMBEDDING_DIM against the embedding model and the stored schema."
        )
        self.expected = expected
        self.actual = actual


def ensure_dimension(vector: Sequence[float], expected: int, what: str = "vector") -> None:
    if len(vector) != expected:
        raise DimensionMismatchError(expected=expected, actual=len(vector), what=what)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    1 - cosine similarity, in [0, 2].

    Raises DimensionMismatchError for vectors of different lengths and
    ValueError when either vector has zero magnitude (the angle is undefined).
    """
    if len(a) != len(b):
        raise DimensionMismatchError(expected=len(a), actual=len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        raise ValueError("cosine distance is undefined for zero-magnitude vectors")

    similarity = dot / math.sqrt(norm_a * norm_b)
    # Rounding can push |similarity| marginally past 1.
    similarity = max(-1.0, min(1.0, similarity))
    return 1.0 - similarity
