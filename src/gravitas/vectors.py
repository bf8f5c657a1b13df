"""Small numpy vector helpers shared by the store and the engines."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def as_array(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1], or 0.0 if either vector has zero norm."""
    va = as_array(a)
    vb = as_array(b)
    if va.shape != vb.shape:
        return 0.0
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return float(np.linalg.norm(as_array(a) - as_array(b)))


def centroid(vectors: Sequence[Sequence[float]], dims: int = 8) -> list[float]:
    if not vectors:
        return [0.0] * dims
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()


def mean_pairwise_distance(vectors: Sequence[Sequence[float]]) -> float:
    """Average euclidean distance over all unordered pairs (0.0 below two)."""
    if len(vectors) < 2:
        return 0.0
    arr = np.asarray(vectors, dtype=np.float64)
    diffs = arr[:, None, :] - arr[None, :, :]
    dists = np.sqrt((diffs**2).sum(axis=-1))
    upper = dists[np.triu_indices(len(arr), k=1)]
    return float(upper.mean())
