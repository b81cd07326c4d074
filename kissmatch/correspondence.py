"""Feature-space nearest neighbours and geometric checks for correspondence search."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.spatial import cKDTree


class FeatureIndex:
    """Exact nearest-neighbour index over a set of feature vectors.

    Distances are reported as squared Euclidean distances.
    """

    def __init__(self, features) -> None:
        data = np.asarray(features, dtype=np.float32)
        if data.ndim != 2 or len(data) == 0:
            raise ValueError("features must be a non-empty (N, D) array")
        self._features = data
        self._tree = cKDTree(data.astype(np.float64))

    def __len__(self) -> int:
        return len(self._features)

    @property
    def dim(self) -> int:
        return self._features.shape[1]

    def _check_dim(self, width: int) -> None:
        if width != self.dim:
            raise ValueError(f"query has dimension {width}, index has {self.dim}")

    def nearest(self, query) -> tuple[int, float]:
        """Return (index, squared distance) of the feature closest to query."""
        q = np.asarray(query, dtype=np.float32).ravel()
        self._check_dim(len(q))
        dist, index = self._tree.query(q.astype(np.float64), k=1)
        return int(index), float(dist) ** 2

    def nearest_all(self, queries) -> tuple[np.ndarray, np.ndarray]:
        """Return (indices, squared distances) of the nearest feature for every query."""
        q = np.asarray(queries, dtype=np.float32)
        if q.size == 0:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float32)
        q = q.reshape(len(q), -1)
        self._check_dim(q.shape[1])
        dists, indices = self._tree.query(q.astype(np.float64), k=1)
        return np.asarray(indices, dtype=np.int64), (np.asarray(dists) ** 2).astype(np.float32)


def normalize_clouds(
    clouds: Sequence, use_absolute_scale: bool
) -> tuple[list[np.ndarray], list[np.ndarray], float]:
    """Centre every cloud on its mean and, unless absolute scale is kept, divide by
    the largest distance from a centre over all clouds.

    Returns (normalised clouds, means, global scale).
    """
    centred: list[np.ndarray] = []
    means: list[np.ndarray] = []
    scale = 0.0
    for cloud in clouds:
        points = np.asarray(cloud, dtype=np.float32).reshape(-1, 3)
        if len(points) == 0:
            raise ValueError("cannot normalise an empty cloud")
        mean = points.mean(axis=0, dtype=np.float64).astype(np.float32)
        shifted = points - mean
        max_scale = float(np.linalg.norm(shifted, axis=1).max())
        scale = max(scale, max_scale)
        centred.append(shifted)
        means.append(mean)

    global_scale = 1.0 if use_absolute_scale else scale
    if global_scale == 0.0:
        raise ValueError("cannot normalise clouds whose points all coincide")
    if global_scale != 1.0:
        centred = [(points / np.float32(global_scale)).astype(np.float32) for points in centred]
    return centred, means, global_scale


def cross_check(
    corres_ij: Sequence[tuple[int, int]],
    corres_ji: Sequence[tuple[int, int]],
    num_i: int,
    num_j: int,
) -> list[tuple[int, int]]:
    """Keep the pairs (i, j) found both from i towards j and from j towards i."""
    matches_i: list[list[int]] = [[] for _ in range(num_i)]
    matches_j: list[list[int]] = [[] for _ in range(num_j)]
    for ci, cj in corres_ij:
        matches_i[ci].append(cj)
    for ci, cj in corres_ji:
        matches_j[cj].append(ci)

    return [
        (i, j)
        for i, targets in enumerate(matches_i)
        for j in targets
        for back in matches_j[j]
        if back == i
    ]


def tuple_lengths_consistent(points_i, points_j, ids_i, ids_j, scale: float) -> bool:
    """Whether the triangles picked by ids_i and ids_j have compatible side lengths.

    Every side length l_j of the second triangle must satisfy
    l_i * scale < l_j < l_i / scale for the matching side l_i of the first.
    """
    if len(ids_i) != 3 or len(ids_j) != 3:
        raise ValueError("a tuple is made of exactly three indices")
    tri_i = np.asarray(points_i, dtype=np.float32).reshape(-1, 3)[list(ids_i)]
    tri_j = np.asarray(points_j, dtype=np.float32).reshape(-1, 3)[list(ids_j)]
    order = [1, 2, 0]
    lengths_i = np.linalg.norm(tri_i - tri_i[order], axis=1)
    lengths_j = np.linalg.norm(tri_j - tri_j[order], axis=1)
    scale = np.float32(scale)
    return bool(np.all((lengths_i * scale < lengths_j) & (lengths_j < lengths_i / scale)))