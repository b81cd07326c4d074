"""Rotation helpers, error metrics and solver parameter presets for registration."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

import numpy as np

NOISE_BOUND = 0.05
N_OUTLIERS = 700
OUTLIER_TRANSLATION_LB = 0.6
OUTLIER_TRANSLATION_UB = 2.0


class RotationEstimationAlgorithm(enum.Enum):
    """Rotation estimators a robust registration solver can use."""

    GNC_TLS = "GNC_TLS"
    QUATRO = "QUATRO"


@dataclass
class RegistrationParams:
    """Parameters for a robust registration solver."""

    noise_bound: float
    cbar2: float = 1.0
    estimate_scaling: bool = False
    rotation_max_iterations: int = 100
    rotation_gnc_factor: float = 1.4
    rotation_estimation_algorithm: RotationEstimationAlgorithm = (
        RotationEstimationAlgorithm.GNC_TLS
    )
    use_max_clique: bool = True
    rotation_cost_threshold: float = 0.0002


def get_3d_rotation(yaw_deg: float, pitch_deg: float, roll_deg: float) -> np.ndarray:
    """Return the rotation Rz(yaw) @ Ry(pitch) @ Rx(roll), angles in degrees."""
    yaw, pitch, roll = (math.radians(a) for a in (yaw_deg, pitch_deg, roll_deg))

    cy, sy = math.cos(yaw), math.sin(yaw)
    yaw_mat = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])

    cp, sp = math.cos(pitch), math.sin(pitch)
    pitch_mat = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])

    cr, sr = math.cos(roll), math.sin(roll)
    roll_mat = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])

    return yaw_mat @ pitch_mat @ roll_mat


def angular_error(r_exp, r_est) -> float:
    """Geodesic angle in radians between two rotation matrices."""
    r_exp = np.asarray(r_exp, dtype=float)
    r_est = np.asarray(r_est, dtype=float)
    # The diagonal sum of r_exp.T @ r_est equals the element-wise product sum.
    diagonal_sum = float((r_exp * r_est).sum())
    cos_angle = (diagonal_sum - 1.0) / 2.0
    return abs(math.acos(float(np.clip(cos_angle, -1.0, 1.0))))


def calc_errors(transform, est_rot, est_ts) -> tuple[float, float]:
    """Return (rotation error in degrees, translation error) against a 4x4 ground truth."""
    transform = np.asarray(transform, dtype=float)
    rot_error = math.degrees(angular_error(transform[:3, :3], est_rot))
    ts_error = float(np.linalg.norm(transform[:3, 3] - np.asarray(est_ts, dtype=float).ravel()))
    return rot_error, ts_error


_COLORED_POINT = np.dtype(
    [("x", "f4"), ("y", "f4"), ("z", "f4"), ("r", "u1"), ("g", "u1"), ("b", "u1")]
)


def colorize(points, color) -> np.ndarray:
    """Attach one RGB colour to every point; returns a structured x/y/z/r/g/b array."""
    color = list(color)
    if len(color) != 3:
        raise ValueError("color must have exactly three components")
    if any(not 0 <= c <= 255 for c in color):
        raise ValueError("color components must lie in [0, 255]")
    xyz = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    colored = np.empty(len(xyz), dtype=_COLORED_POINT)
    colored["x"], colored["y"], colored["z"] = xyz.T
    colored["r"], colored["g"], colored["b"] = color
    return colored


def get_params(noise_bound: float, reg_type: str, robin_mode: str) -> RegistrationParams:
    """Build solver parameters for the "Quatro" or "TEASER" registration preset."""
    params = RegistrationParams(noise_bound=noise_bound)
    if reg_type == "Quatro":
        params.rotation_estimation_algorithm = RotationEstimationAlgorithm.QUATRO
    elif reg_type == "TEASER":
        params.rotation_estimation_algorithm = RotationEstimationAlgorithm.GNC_TLS
    else:
        raise ValueError("Not implemented!")
    if robin_mode in ("max_clique", "max_core"):
        params.use_max_clique = False
    params.rotation_cost_threshold = 0.0002
    return params


def yaw_transform(yaw_deg: float) -> np.ndarray:
    """Homogeneous 4x4 transform rotating about the z axis by yaw_deg degrees."""
    yaw = math.radians(yaw_deg)
    transform = np.eye(4)
    transform[0, 0] = math.cos(yaw)
    transform[0, 1] = -math.sin(yaw)
    transform[1, 0] = math.sin(yaw)
    transform[1, 1] = math.cos(yaw)
    return transform


def transform_points(points, transform) -> np.ndarray:
    """Apply a homogeneous 4x4 transform to an (N, 3) array of points."""
    xyz = np.asarray(points, dtype=float).reshape(-1, 3)
    transform = np.asarray(transform, dtype=float)
    if transform.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    return xyz @ transform[:3, :3].T + transform[:3, 3]