import numpy as np
import pytest

from kissmatch.correspondence import (
    FeatureIndex,
    cross_check,
    normalize_clouds,
    tuple_lengths_consistent,
)


@pytest.fixture
def features():
    rng = np.random.default_rng(3)
    return rng.random((40, 33)).astype(np.float32)


def test_nearest_finds_itself(features):
    index = FeatureIndex(features)
    for k in (0, 7, 39):
        found, dist = index.nearest(features[k])
        assert found == k
        assert dist == pytest.approx(0.0, abs=1e-9)


def test_nearest_distance_is_squared(features):
    index = FeatureIndex(features)
    query = features[5] + 0.001
    found, dist = index.nearest(query)
    expected = float(np.sum((features[found].astype(np.float64) - query.astype(np.float64)) ** 2))
    assert dist == pytest.approx(expected, rel=1e-4)


def test_nearest_all_matches_nearest(features):
    index = FeatureIndex(features)
    queries = features[::-1] + 0.0005
    indices, dists = index.nearest_all(queries)
    assert len(indices) == len(queries)
    for q, i, d in zip(queries, indices, dists):
        single_i, single_d = index.nearest(q)
        assert i == single_i
        assert d == pytest.approx(single_d, rel=1e-4)
    assert list(indices) == list(range(39, -1, -1))


def test_nearest_all_empty(features):
    indices, dists = FeatureIndex(features).nearest_all(np.empty((0, 33)))
    assert len(indices) == 0 and len(dists) == 0


def test_index_rejects_empty_and_wrong_dim(features):
    with pytest.raises(ValueError):
        FeatureIndex(np.empty((0, 33)))
    index = FeatureIndex(features)
    assert len(index) == 40
    with pytest.raises(ValueError):
        index.nearest(np.zeros(5))


def test_normalize_relative_scale():
    rng = np.random.default_rng(0)
    a = rng.normal(size=(50, 3)) * 4 + 10
    b = rng.normal(size=(30, 3)) + np.array([1.0, -2.0, 3.0])
    (na, nb), means, scale = normalize_clouds([a, b], use_absolute_scale=False)
    np.testing.assert_allclose(means[0], a.mean(axis=0), rtol=1e-4)
    np.testing.assert_allclose(na.mean(axis=0), 0.0, atol=1e-5)
    np.testing.assert_allclose(nb.mean(axis=0), 0.0, atol=1e-5)
    largest = max(np.linalg.norm(na, axis=1).max(), np.linalg.norm(nb, axis=1).max())
    assert largest == pytest.approx(1.0, rel=1e-5)
    assert scale == pytest.approx(np.linalg.norm(a - a.mean(axis=0), axis=1).max(), rel=1e-4)


def test_normalize_absolute_scale_keeps_size():
    a = np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    b = np.array([[1.0, 1.0, 1.0], [1.0, 3.0, 1.0]])
    (na, nb), _, scale = normalize_clouds([a, b], use_absolute_scale=True)
    assert scale == 1.0
    np.testing.assert_allclose(na, a - a.mean(axis=0))
    np.testing.assert_allclose(nb, b - b.mean(axis=0))


def test_normalize_rejects_empty_cloud():
    with pytest.raises(ValueError):
        normalize_clouds([np.empty((0, 3)), np.ones((2, 3))], use_absolute_scale=True)


def test_cross_check_keeps_mutual_pairs():
    corres_ij = [(0, 1), (1, 0)]
    corres_ji = [(0, 1), (0, 0)]
    assert cross_check(corres_ij, corres_ji, 2, 2) == [(0, 1)]


def test_cross_check_all_mutual():
    pairs = [(0, 2), (1, 0), (2, 1)]
    result = cross_check(pairs, pairs, 3, 3)
    assert sorted(result) == sorted(pairs)


def test_cross_check_no_pairs():
    assert cross_check([], [(0, 0)], 1, 1) == []


@pytest.fixture
def triangle():
    return np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 2.0, 0.0], [5.0, 5.0, 5.0]])


def test_tuple_consistent_under_rigid_motion(triangle):
    theta = 0.7
    rot = np.array(
        [[np.cos(theta), -np.sin(theta), 0.0], [np.sin(theta), np.cos(theta), 0.0], [0, 0, 1]]
    )
    moved = triangle @ rot.T + np.array([3.0, -1.0, 2.0])
    assert tuple_lengths_consistent(triangle, moved, [0, 1, 2], [0, 1, 2], 0.9)


def test_tuple_inconsistent_when_scaled(triangle):
    assert not tuple_lengths_consistent(triangle, triangle * 2.0, [0, 1, 2], [0, 1, 2], 0.9)


def test_tuple_inconsistent_with_other_points(triangle):
    assert not tuple_lengths_consistent(triangle, triangle, [0, 1, 2], [0, 1, 3], 0.9)


def test_tuple_requires_three_ids(triangle):
    with pytest.raises(ValueError):
        tuple_lengths_consistent(triangle, triangle, [0, 1], [0, 1], 0.9)