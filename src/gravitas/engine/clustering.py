"""Density clustering over feature vectors.

Pure functions with no I/O: given a list of vectors, return index
clusters. Distances are euclidean.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from gravitas.vectors import mean_pairwise_distance

NOISE = -1


@dataclass(frozen=True)
class Cluster:
    points: tuple[int, ...]
    density: float


def cluster_density(vectors: Sequence[Sequence[float]], eps: float) -> float:
    """``max(0, 1 - mean pairwise distance / eps)``; singletons are fully dense."""
    if len(vectors) < 2:
        return 1.0
    return max(0.0, 1.0 - mean_pairwise_distance(vectors) / eps)


def dbscan_labels(
    vectors: Sequence[Sequence[float]], eps: float, min_pts: int
) -> list[int]:
    """Classic DBSCAN. Returns a cluster label per point, ``NOISE`` for outliers.

    A point is core when its eps-neighbourhood (itself included) holds at
    least *min_pts* points. Labels are assigned in input order so the
    output is deterministic.
    """
    n = len(vectors)
    if n == 0:
        return []
    arr = np.asarray(vectors, dtype=np.float64)
    dists = np.sqrt(((arr[:, None, :] - arr[None, :, :]) ** 2).sum(axis=-1))
    neighbours = [np.flatnonzero(dists[i] <= eps).tolist() for i in range(n)]

    labels = [None] * n
    cluster_id = 0
    for i in range(n):
        if labels[i] is not None:
            continue
        if len(neighbours[i]) < min_pts:
            labels[i] = NOISE
            continue
        labels[i] = cluster_id
        queue = [j for j in neighbours[i] if j != i]
        while queue:
            j = queue.pop(0)
            if labels[j] == NOISE:
                labels[j] = cluster_id
            if labels[j] is not None:
                continue
            labels[j] = cluster_id
            if len(neighbours[j]) >= min_pts:
                queue.extend(k for k in neighbours[j] if labels[k] is None or labels[k] == NOISE)
        cluster_id += 1
    return [int(label) for label in labels]


def dbscan(
    vectors: Sequence[Sequence[float]], eps: float, min_pts: int
) -> list[Cluster]:
    """Group *vectors* into clusters of point indices with their density."""
    labels = dbscan_labels(vectors, eps, min_pts)
    groups: dict[int, list[int]] = {}
    for idx, label in enumerate(labels):
        if label != NOISE:
            groups.setdefault(label, []).append(idx)
    return [
        Cluster(
            points=tuple(points),
            density=cluster_density([vectors[i] for i in points], eps),
        )
        for _, points in sorted(groups.items())
    ]


def project(vectors: Sequence[Sequence[float]], dims: Sequence[int]) -> list[list[float]]:
    """Keep only the listed dimensions of each vector."""
    return [[float(v[d]) for d in dims] for v in vectors]
