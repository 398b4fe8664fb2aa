"""
Vector helpers and the semantic capability interface.

Anything the decision engine scores must expose a ``semantic_centroid``. That
capability is expressed as a Protocol so the engine depends on the interface
instead of inspecting entity types at runtime.
"""
from typing import List, Protocol, Sequence, Union

import numpy as np

VectorLike = Union[np.ndarray, Sequence[float]]


class Embeddable(Protocol):
    """An entity with a semantic reference vector."""

    @property
    def name(self) -> str: ...

    @property
    def semantic_centroid(self) -> np.ndarray: ...


def as_vector(values: VectorLike) -> np.ndarray:
    """
    Coerce values into a 1-D float array.

    Raises:
        ValueError: If the input is empty or not one-dimensional
    """
    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim != 1 or vector.shape[0] == 0:
        raise ValueError(f"Expected a non-empty 1-D vector, got shape {vector.shape}")
    return vector


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity in [-1, 1].

    Zero vectors score 0.0.

    Raises:
        ValueError: If the vectors differ in dimension
    """
    vec_a = as_vector(a)
    vec_b = as_vector(b)
    if vec_a.shape != vec_b.shape:
        raise ValueError(
            f"Dimension mismatch: {vec_a.shape[0]} vs {vec_b.shape[0]}"
        )

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Rounding can push |similarity| slightly past 1
    return max(-1.0, min(similarity, 1.0))


def normalized_mean(vectors: List[np.ndarray]) -> np.ndarray:
    """Mean of the vectors, L2-normalised (centroid of a set of embeddings)."""
    if not vectors:
        raise ValueError("Cannot compute a centroid of zero vectors")
    stacked = np.vstack([as_vector(v) for v in vectors])
    centroid = stacked.mean(axis=0)
    norm = np.linalg.norm(centroid)
    if norm == 0:
        return centroid
    return centroid / norm
