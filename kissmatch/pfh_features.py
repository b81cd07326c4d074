"""Building blocks of FPFH descriptors: neighbourhoods, pair features and weighting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

NOT_ASSIGNED = 2**32 - 1
"""Index marking a neighbour slot that points at no point."""

UNASSIGNED_NORMAL = np.full(3, np.nan, dtype=np.float32)
"""Normal used for points whose normal could not be estimated."""

NUM_BINS = 11
"""Default number of bins of each of the three angular histograms."""


@dataclass
class Neighborhood:
    """Neighbours found around one point, with their (squared) distances."""

    neighboring_indices: list[int] = field(default_factory=list)
    neighboring_dists: list[float] = field(default_factory=list)
    is_planar: bool = False

    def clear(self) -> None:
        """Forget every neighbour."""
        self.neighboring_indices.clear()
        self.neighboring_dists.clear()

    def __len__(self) -> int:
        return len(self.neighboring_indices)


def check_nan(vectors: Iterable) -> None:
    """Raise ValueError if any of the vectors holds a NaN."""
    for vector in vectors:
        if np.isnan(np.asarray(vector, dtype=float)).any():
            raise ValueError("Vector contains NaN.")


def is_normal_valid(normal) -> bool:
    """A normal is valid unless one of its components is NaN."""
    return not bool(np.isnan(np.asarray(normal, dtype=float)).any())


def _acos_or_nan(value: float) -> float:
    with np.errstate(invalid="ignore"):
        return float(np.arccos(value))


def compute_pair_features(p1, n1, p2, n2) -> tuple[float, float, float, float] | None:
    """Darboux-frame features (f1, f2, f3, f4) of two oriented points.

    f1 is the angle of the second normal in the (u, w) plane, f2 and f3 are
    cosines and f4 is the distance between the points. Returns None when the
    points coincide or the frame is degenerate.
    """
    p1 = np.asarray(p1, dtype=float)
    p2 = np.asarray(p2, dtype=float)
    n1 = np.asarray(n1, dtype=float)
    n2 = np.asarray(n2, dtype=float)

    dp2p1 = p2 - p1
    f4 = float(np.linalg.norm(dp2p1))
    if f4 == 0.0:
        return None

    angle1 = float(n1 @ dp2p1) / f4
    angle2 = float(n2 @ dp2p1) / f4
    # Pick the same point as the frame origin whichever order the pair comes in.
    if _acos_or_nan(abs(angle1)) > _acos_or_nan(abs(angle2)):
        n1, n2 = n2, n1
        dp2p1 = -dp2p1
        f3 = -angle2
    else:
        f3 = angle1

    v = np.cross(dp2p1, n1)
    v_norm = float(np.linalg.norm(v))
    if v_norm == 0.0:
        return None
    v /= v_norm
    w = np.cross(n1, v)

    f2 = float(v @ n2)
    f1 = float(np.arctan2(w @ n2, n1 @ n2))
    return f1, f2, f3, f4


def weight_point_spfh_signature(hist_f1, hist_f2, hist_f3, indices, dists) -> np.ndarray:
    """Combine neighbour SPFH histograms into one FPFH signature.

    A neighbour at distance zero (the query point) contributes with weight one,
    every other neighbour with weight 1 / distance; neighbours marked
    NOT_ASSIGNED are ignored. Each of the three segments is rescaled to sum
    to 100 unless it is all zero.
    """
    if len(indices) != len(dists):
        raise ValueError("indices and dists must have the same length")
    hists = [np.asarray(h, dtype=np.float32) for h in (hist_f1, hist_f2, hist_f3)]
    if any(h.ndim != 2 or len(h) == 0 for h in hists):
        raise ValueError("each histogram set must hold at least one histogram")

    chosen: list[int] = []
    weights: list[float] = []
    for index, dist in zip(indices, dists):
        if dist == 0:
            chosen.append(int(index))
            weights.append(1.0)
        elif index != NOT_ASSIGNED:
            chosen.append(int(index))
            weights.append(1.0 / float(dist))

    segments = []
    for hist in hists:
        if chosen:
            segment = np.asarray(weights, dtype=np.float64) @ hist[chosen].astype(np.float64)
        else:
            segment = np.zeros(hist.shape[1], dtype=np.float64)
        total = float(segment.sum())
        if total != 0:
            segment = segment * (100.0 / total)
        segments.append(segment)
    return np.concatenate(segments).astype(np.float32)