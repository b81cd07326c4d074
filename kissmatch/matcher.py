"""Correspondence search between two feature-annotated point clouds."""

from __future__ import annotations

import logging
import time

import numpy as np

from kissmatch.correspondence import (
    FeatureIndex,
    cross_check,
    normalize_clouds,
    tuple_lengths_consistent,
)

logger = logging.getLogger(__name__)

Pair = tuple[int, int]


def _as_cloud(points) -> np.ndarray:
    return np.asarray(points, dtype=np.float32).reshape(-1, 3)


def _as_features(features) -> np.ndarray:
    data = np.asarray(features, dtype=np.float32)
    if data.ndim != 2 or len(data) == 0:
        raise ValueError("features must be a non-empty (N, D) array")
    return data


def _length(a: np.ndarray, b: np.ndarray) -> np.float32:
    return np.float32(np.linalg.norm(a - b))


class Matcher:
    """Finds point correspondences from feature descriptors.

    Mutual nearest neighbours in feature space are kept, optionally filtered by
    a tuple test that compares triangle side lengths in both clouds.
    """

    def __init__(self, thr_dist: float = 30.0, num_max_corres: int = 600, seed=None) -> None:
        # Matches farther apart than thr_dist in feature space are very likely outliers.
        self.thr_dist = float(thr_dist)
        # Too many correspondences slow the later registration stage down.
        self.num_max_corres = num_max_corres
        self.correspondences: list[Pair] = []
        self.means: list[np.ndarray] = []
        self.global_scale = 1.0
        self._rng = np.random.default_rng(seed)
        self._clouds: list[np.ndarray] = []
        self._features: list[np.ndarray] = []

    def calculate_correspondences(
        self,
        source_points,
        target_points,
        source_features,
        target_features,
        use_absolute_scale: bool = True,
        use_crosscheck: bool = True,
        use_tuple_test: bool = True,
        tuple_scale: float = 0.0,
        use_optimized_matching: bool = True,
    ) -> list[Pair]:
        """Return (source index, target index) pairs matching the two clouds.

        In optimized mode the result is only refreshed when ``tuple_scale`` is
        non-zero; otherwise the correspondences of the previous call remain.
        """
        clouds = [_as_cloud(source_points), _as_cloud(target_points)]
        features = [_as_features(source_features), _as_features(target_features)]
        for cloud, feats in zip(clouds, features):
            if len(cloud) != len(feats):
                raise ValueError("every point needs exactly one feature vector")

        if not use_optimized_matching:
            # Sets the global scale needed for a consistent search radius.
            clouds, self.means, self.global_scale = normalize_clouds(clouds, use_absolute_scale)
        self._clouds = clouds
        self._features = features

        if use_optimized_matching:
            logger.info("Use optimized matching!")
            self._optimized_matching(self.thr_dist, self.num_max_corres, tuple_scale)
        else:
            self._advanced_matching(use_crosscheck, use_tuple_test, tuple_scale)
        return list(self.correspondences)

    def _order(self) -> tuple[int, int, bool]:
        if len(self._clouds[1]) > len(self._clouds[0]):
            return 1, 0, True
        return 0, 1, False

    def _advanced_matching(self, use_crosscheck: bool, use_tuple_test: bool, tuple_scale: float) -> None:
        fi, fj, swapped = self._order()
        n_i, n_j = len(self._clouds[fi]), len(self._clouds[fj])
        tree_i = FeatureIndex(self._features[fi])
        tree_j = FeatureIndex(self._features[fj])

        i_to_j = [-1] * n_i
        corres_ji: list[Pair] = []
        for j, feature in enumerate(self._features[fj]):
            i, _ = tree_i.nearest(feature)
            if i_to_j[i] == -1:
                i_to_j[i], _ = tree_j.nearest(self._features[fi][i])
            corres_ji.append((i, j))
        corres_ij = [(i, j) for i, j in enumerate(i_to_j) if j != -1]

        if use_crosscheck:
            logger.debug("CROSS CHECK")
            corres = cross_check(corres_ij, corres_ji, n_i, n_j)
        else:
            logger.debug("Skipping Cross Check.")
            corres = corres_ij + corres_ji

        if use_tuple_test and tuple_scale != 0:
            logger.debug("TUPLE CONSTRAINT")
            corres_tuple: list[Pair] = []
            ncorr = len(corres)
            for _ in range(ncorr * 100):
                picks = [corres[int(r)] for r in self._rng.integers(0, ncorr, size=3)]
                ids_i = [p[0] for p in picks]
                ids_j = [p[1] for p in picks]
                if tuple_lengths_consistent(
                    self._clouds[fi], self._clouds[fj], ids_i, ids_j, tuple_scale
                ):
                    corres_tuple.extend(picks)
            corres = corres_tuple
        else:
            logger.debug("Skipping Tuple Constraint.")

        if swapped:
            corres = [(j, i) for i, j in corres]
        self.correspondences = sorted(set(corres))

    def _mutual_matches(self, fi: int, fj: int, thr_dist: float) -> list[Pair]:
        tree_i = FeatureIndex(self._features[fi])
        tree_j = FeatureIndex(self._features[fj])
        nearest_i, dists = tree_i.nearest_all(self._features[fj])

        thr_sqr = np.float32(thr_dist) * np.float32(thr_dist)
        i_to_j = [-1] * len(self._clouds[fi])
        corres: list[Pair] = []
        for j, (i, dist) in enumerate(zip(nearest_i.tolist(), dists)):
            if dist > thr_sqr or i_to_j[i] != -1:
                continue
            back, _ = tree_j.nearest(self._features[fi][i])
            i_to_j[i] = back
            if back == j:
                corres.append((i, j))
        return corres

    def _optimized_matching(self, thr_dist: float, num_max_corres: int, tuple_scale: float) -> None:
        fi, fj, swapped = self._order()
        start = time.perf_counter()
        corres = self._mutual_matches(fi, fj, thr_dist)
        end_corr = time.perf_counter()

        if tuple_scale == 0:
            logger.debug("Skipping Tuple Constraint.")
            return

        logger.debug("TUPLE CONSTRAINT")
        scale = np.float32(tuple_scale)
        pts_i, pts_j = self._clouds[fi], self._clouds[fj]
        ncorr = len(corres)
        included = [False] * ncorr
        result: list[Pair] = []

        def add_unique(rand_index: int, id_i: int, id_j: int) -> None:
            if not included[rand_index]:
                result.append((id_j, id_i) if swapped else (id_i, id_j))
                included[rand_index] = True

        for _ in range(ncorr * 100):
            rand0, rand1 = (int(r) for r in self._rng.integers(0, ncorr, size=2))
            idi0, idj0 = corres[rand0]
            idi1, idj1 = corres[rand1]

            li0 = _length(pts_i[idi0], pts_i[idi1])
            lj0 = _length(pts_j[idj0], pts_j[idj1])
            if li0 * scale > lj0 or lj0 > li0 / scale:
                continue

            rand2 = int(self._rng.integers(0, ncorr))
            idi2, idj2 = corres[rand2]
            li1 = _length(pts_i[idi1], pts_i[idi2])
            li2 = _length(pts_i[idi2], pts_i[idi0])
            lj1 = _length(pts_j[idj1], pts_j[idj2])
            lj2 = _length(pts_j[idj2], pts_j[idj0])

            if li1 * scale < lj1 < li1 / scale and li2 * scale < lj2 < li2 / scale:
                add_unique(rand0, idi0, idj0)
                add_unique(rand1, idi1, idj1)
                add_unique(rand2, idi2, idj2)
            if len(result) > num_max_corres:
                break

        self.correspondences = result
        logger.debug(
            "cross checking: %.6f sec, tuple test: %.6f sec",
            end_corr - start,
            time.perf_counter() - end_corr,
        )