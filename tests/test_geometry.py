import math

import numpy as np
import pytest

from kissmatch.geometry import (
    RotationEstimationAlgorithm,
    angular_error,
    calc_errors,
    colorize,
    get_3d_rotation,
    get_params,
    transform_points,
    yaw_transform,
)


def test_zero_angles_give_identity():
    assert np.allclose(get_3d_rotation(0, 0, 0), np.eye(3))


@pytest.mark.parametrize("angles", [(60, 0, 0), (10, 20, 30), (-45, 80, 170)])
def test_rotation_is_orthonormal(angles):
    rot = get_3d_rotation(*angles)
    assert np.allclose(rot @ rot.T, np.eye(3))
    assert math.isclose(np.linalg.det(rot), 1.0)


def test_yaw_quarter_turn_maps_x_to_y():
    rot = get_3d_rotation(90, 0, 0)
    assert np.allclose(rot @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_angular_error_of_identical_rotations_is_zero():
    rot = get_3d_rotation(12, 34, 56)
    assert angular_error(rot, rot) == pytest.approx(0.0, abs=1e-6)


def test_angular_error_matches_yaw_angle():
    assert angular_error(np.eye(3), get_3d_rotation(60, 0, 0)) == pytest.approx(
        math.radians(60)
    )


def test_calc_errors_exact_estimate():
    transform = np.eye(4)
    transform[:3, :3] = get_3d_rotation(30, 0, 0)
    transform[:3, 3] = [1.0, 2.0, 3.0]
    rot_err, ts_err = calc_errors(transform, transform[:3, :3], transform[:3, 3])
    assert rot_err == pytest.approx(0.0, abs=1e-5)
    assert ts_err == pytest.approx(0.0)


def test_calc_errors_translation_offset_and_rotation_degrees():
    transform = np.eye(4)
    rot_err, ts_err = calc_errors(transform, get_3d_rotation(45, 0, 0), [3.0, 4.0, 0.0])
    assert rot_err == pytest.approx(45.0)
    assert ts_err == pytest.approx(5.0)


def test_colorize_keeps_coordinates_and_sets_color():
    pts = np.array([[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]])
    colored = colorize(pts, [195, 195, 195])
    assert len(colored) == 2
    assert np.allclose(np.stack([colored["x"], colored["y"], colored["z"]], axis=1), pts)
    assert (colored["r"] == 195).all() and (colored["b"] == 195).all()


def test_colorize_rejects_bad_color():
    with pytest.raises(ValueError):
        colorize(np.zeros((1, 3)), [1, 2])
    with pytest.raises(ValueError):
        colorize(np.zeros((1, 3)), [1, 2, 300])


def test_get_params_quatro():
    params = get_params(0.025, "Quatro", "max_core")
    assert params.rotation_estimation_algorithm is RotationEstimationAlgorithm.QUATRO
    assert params.noise_bound == 0.025
    assert params.use_max_clique is False
    assert params.rotation_cost_threshold == 0.0002
    assert params.rotation_gnc_factor == 1.4
    assert params.rotation_max_iterations == 100
    assert params.estimate_scaling is False


def test_get_params_teaser_keeps_max_clique_for_other_modes():
    params = get_params(0.05, "TEASER", "none")
    assert params.rotation_estimation_algorithm is RotationEstimationAlgorithm.GNC_TLS
    assert params.use_max_clique is True


def test_get_params_unknown_type():
    with pytest.raises(ValueError, match="Not implemented"):
        get_params(0.05, "ICP", "max_core")


def test_yaw_transform_matches_rotation():
    transform = yaw_transform(37.0)
    assert np.allclose(transform[:3, :3], get_3d_rotation(37.0, 0, 0))
    assert np.allclose(transform[:3, 3], 0.0)
    assert np.allclose(transform[3], [0, 0, 0, 1])


def test_transform_points_round_trip():
    rng = np.random.default_rng(0)
    pts = rng.normal(size=(20, 3))
    transform = np.eye(4)
    transform[:3, :3] = get_3d_rotation(20, 10, -5)
    transform[:3, 3] = [0.5, -1.0, 2.0]
    moved = transform_points(pts, transform)
    back = transform_points(moved, np.linalg.inv(transform))
    assert np.allclose(back, pts)
    assert np.allclose(np.linalg.norm(moved[0] - moved[1]), np.linalg.norm(pts[0] - pts[1]))


def test_transform_points_rejects_bad_matrix():
    with pytest.raises(ValueError):
        transform_points(np.zeros((2, 3)), np.eye(3))