"""Fast Point Feature Histogram (FPFH) estimation with linearity-filtered normals."""

from __future__ import annotations

import math

import numpy as np
from scipy.spatial import cKDTree

from kissmatch.pfh_features import (
    NUM_BINS,
    UNASSIGNED_NORMAL,
    Neighborhood,
    compute_pair_features,
    weight_point_spfh_signature,
)

_D_PI = float(np.float32(1.0) / (np.float32(2.0) * np.float32(math.pi)))


def _bin_index(value: float, nr_bins: int) -> int:
    # A NaN feature lands in the first bin, as an out-of-range index would.
    if math.isnan(value):
        return 0
    return min(max(math.floor(value), 0), nr_bins - 1)


class FasterPFH:
    """Computes FPFH descriptors for the points whose local normal is reliable.

    A point gets a normal only when at least ``minimum_num_valid`` neighbours lie
    within ``normal_radius`` and its neighbourhood is not too linear. Descriptors
    are produced for points that keep enough valid neighbours.
    """

    minimum_num_valid = 3

    def __init__(
        self,
        normal_radius: float,
        fpfh_radius: float,
        thr_linearity: float,
        criteria: str = "L2",
        use_non_maxima_suppression: bool = False,
    ) -> None:
        self.normal_radius = float(normal_radius)
        self.fpfh_radius = float(fpfh_radius)
        self.thr_linearity = float(thr_linearity)
        self.criteria = criteria
        self.use_non_maxima_suppression = use_non_maxima_suppression
        self.sqr_fpfh_radius = float(np.float32(fpfh_radius) * np.float32(fpfh_radius))
        self.nr_bins_f1 = NUM_BINS
        self.nr_bins_f2 = NUM_BINS
        self.nr_bins_f3 = NUM_BINS

        self.points = np.empty((0, 3), dtype=np.float32)
        self.normals = np.empty((0, 3), dtype=np.float32)
        self.is_valid: list[bool] = []
        self.clear()

    @property
    def num_points(self) -> int:
        return len(self.points)

    def clear(self) -> None:
        """Drop every intermediate result of a previous computation."""
        self.neighborhoods: list[Neighborhood] = []
        self.spfh_indices: list[int] = []
        self.fpfh_indices: list[int] = []
        self.spfh_hist_lookup: dict[int, int] = {}
        self.hist_f1 = np.empty((0, self.nr_bins_f1), dtype=np.float32)
        self.hist_f2 = np.empty((0, self.nr_bins_f2), dtype=np.float32)
        self.hist_f3 = np.empty((0, self.nr_bins_f3), dtype=np.float32)

    def set_input_cloud(self, points) -> None:
        """Take an (N, 3) cloud and reset normals, neighbourhoods and validity."""
        self.clear()
        self.points = np.asarray(points, dtype=np.float32).reshape(-1, 3).copy()
        n = len(self.points)
        self.normals = np.tile(UNASSIGNED_NORMAL, (n, 1))
        self.neighborhoods = [Neighborhood() for _ in range(n)]
        self.is_valid = [False] * n

    def estimate_normal_with_linearity_filtering(
        self, neighborhood: Neighborhood, normal_radius: float, thr_linearity: float
    ) -> tuple[bool, np.ndarray]:
        """Estimate a normal from the neighbours within normal_radius.

        Returns (is_valid, normal); the normal is all NaN when there are too
        few neighbours or the neighbourhood is more linear than thr_linearity.
        """
        if self.criteria == "L1":
            thr_radius = float(normal_radius)
        elif self.criteria == "L2":
            thr_radius = float(np.float32(normal_radius) * np.float32(normal_radius))
        else:
            raise ValueError("Wrong criteria given")

        selected = [
            idx
            for idx, dist in zip(neighborhood.neighboring_indices, neighborhood.neighboring_dists)
            if dist < thr_radius
        ]
        if len(selected) < self.minimum_num_valid:
            return False, UNASSIGNED_NORMAL.copy()

        patch = self.points[selected].astype(np.float64)
        mean = patch.mean(axis=0)
        deviation = patch - mean
        covariance = deviation.T @ deviation / (len(selected) - 1)

        u, singular_values, _ = np.linalg.svd(covariance)
        with np.errstate(invalid="ignore", divide="ignore"):
            linearity = (singular_values[0] - singular_values[1]) / singular_values[0]
        if linearity > thr_linearity:
            return False, UNASSIGNED_NORMAL.copy()

        normal = u[:, 2]
        # Orient every normal consistently with respect to the origin.
        if -float(mean @ normal) < 0:
            normal = -normal
        return True, normal.astype(np.float32)

    def _search_neighbors(self) -> None:
        tree = cKDTree(self.points.astype(np.float64))
        radius = math.sqrt(self.sqr_fpfh_radius)
        for i, candidates in enumerate(tree.query_ball_point(self.points.astype(np.float64), radius)):
            if not candidates:
                continue
            candidates = np.sort(np.asarray(candidates, dtype=np.int64))
            diff = self.points[candidates].astype(np.float64) - self.points[i].astype(np.float64)
            sqr_dists = np.einsum("ij,ij->i", diff, diff)
            keep = sqr_dists < self.sqr_fpfh_radius
            candidates, sqr_dists = candidates[keep], sqr_dists[keep]
            order = np.argsort(sqr_dists, kind="stable")
            neighborhood = self.neighborhoods[i]
            neighborhood.neighboring_indices.extend(int(c) for c in candidates[order])
            neighborhood.neighboring_dists.extend(
                float(np.float32(d)) for d in sqr_dists[order]
            )

    def compute_feature(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (points, descriptors) for every point that receives an FPFH."""
        num_bins = self.nr_bins_f1 + self.nr_bins_f2 + self.nr_bins_f3
        if self.num_points == 0:
            return np.empty((0, 3), dtype=np.float32), np.empty((0, num_bins), dtype=np.float32)

        if self.criteria == "L2":
            self._search_neighbors()

        valid_indices = []
        for i, neighborhood in enumerate(self.neighborhoods):
            if len(neighborhood) > 2:
                is_valid, normal = self.estimate_normal_with_linearity_filtering(
                    neighborhood, self.normal_radius, self.thr_linearity
                )
                self.is_valid[i] = is_valid
                self.normals[i] = normal
            if self.is_valid[i]:
                valid_indices.append(i)

        # Without this step the final descriptors would hold NaN values.
        self.spfh_indices = self.filter_indices_causing_nan(valid_indices)
        self.spfh_hist_lookup = {p_idx: k for k, p_idx in enumerate(self.spfh_indices)}

        size = len(self.spfh_indices)
        self.hist_f1 = np.zeros((size, self.nr_bins_f1), dtype=np.float32)
        self.hist_f2 = np.zeros((size, self.nr_bins_f2), dtype=np.float32)
        self.hist_f3 = np.zeros((size, self.nr_bins_f3), dtype=np.float32)
        for p_idx, k in self.spfh_hist_lookup.items():
            self.hist_f1[k], self.hist_f2[k], self.hist_f3[k] = self.compute_point_spfh_signature(
                p_idx
            )

        self.fpfh_indices = list(self.spfh_indices)
        out_points = np.empty((size, 3), dtype=np.float32)
        descriptors = np.empty((size, num_bins), dtype=np.float32)
        for j, p_idx in enumerate(self.fpfh_indices):
            neighborhood = self.neighborhoods[p_idx]
            nn_indices: list[int] = []
            nn_dists: list[float] = []
            for idx, dist in zip(neighborhood.neighboring_indices, neighborhood.neighboring_dists):
                if self.is_valid[idx] and idx in self.spfh_hist_lookup:
                    nn_indices.append(self.spfh_hist_lookup[idx])
                    nn_dists.append(dist)
            out_points[j] = self.points[p_idx]
            descriptors[j] = weight_point_spfh_signature(
                self.hist_f1, self.hist_f2, self.hist_f3, nn_indices, nn_dists
            )
        return out_points, descriptors

    def compute_point_spfh_signature(self, p_idx: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Simplified point feature histograms (f1, f2, f3) of one point."""
        hist_f1 = np.zeros(self.nr_bins_f1, dtype=np.float32)
        hist_f2 = np.zeros(self.nr_bins_f2, dtype=np.float32)
        hist_f3 = np.zeros(self.nr_bins_f3, dtype=np.float32)

        neighbors = self.neighborhoods[p_idx].neighboring_indices
        num_valid = sum(1 for idx in neighbors if self.is_valid[idx] and idx != p_idx)
        with np.errstate(divide="ignore"):
            hist_incr = np.float32(100.0) / np.float32(num_valid)

        for neighbor_idx in neighbors:
            if not self.is_valid[neighbor_idx] and neighbor_idx == p_idx:
                continue
            features = compute_pair_features(
                self.points[p_idx],
                self.normals[p_idx],
                self.points[neighbor_idx],
                self.normals[neighbor_idx],
            )
            if features is None:
                continue
            f1, f2, f3, _ = (float(np.float32(f)) for f in features)
            hist_f1[_bin_index(self.nr_bins_f1 * ((f1 + math.pi) * _D_PI), self.nr_bins_f1)] += hist_incr
            hist_f2[_bin_index(self.nr_bins_f2 * ((f2 + 1.0) * 0.5), self.nr_bins_f2)] += hist_incr
            hist_f3[_bin_index(self.nr_bins_f3 * ((f3 + 1.0) * 0.5), self.nr_bins_f3)] += hist_incr
        return hist_f1, hist_f2, hist_f3

    def filter_indices_causing_nan(self, indices) -> list[int]:
        """Drop indices with fewer valid neighbours than required.

        A rejected index is replaced by the last one, which is then checked in
        its place, so the order of the survivors follows that swap rule.
        """
        result = list(indices)
        i = 0
        while i < len(result):
            neighbors = self.neighborhoods[result[i]].neighboring_indices
            num_valid_neighbors = sum(1 for idx in neighbors if self.is_valid[idx])
            if num_valid_neighbors < self.minimum_num_valid:
                result[i] = result[-1]
                result.pop()
            else:
                i += 1
        return result