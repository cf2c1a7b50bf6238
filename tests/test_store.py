"""Tests for the correspondence database."""

from __future__ import annotations

import numpy as np
import pytest

from refcalib.registration import PointPairStore


@pytest.fixture
def store() -> PointPairStore:
    """Empty store."""
    return PointPairStore()


def test_add_and_size(store: PointPairStore) -> None:
    """Test pairs are appended in order."""
    assert store.size() == 0
    assert store.add([0.0, 0.0, 0.0], [1.0, 2.0, 3.0])
    assert store.add(np.array([1.0, 0.0, 0.0]), (2.0, 2.0, 3.0))

    assert store.size() == 2
    assert len(store) == 2
    pairs = store.get_all()
    assert np.allclose(pairs[0].target, [1.0, 2.0, 3.0])
    assert np.allclose(pairs[1].source, [1.0, 0.0, 0.0])


@pytest.mark.parametrize(
    "source, target",
    [
        ([np.nan, 0.0, 0.0], [0.0, 0.0, 0.0]),
        ([0.0, 0.0, 0.0], [0.0, np.inf, 0.0]),
        ([0.0, 0.0], [0.0, 0.0, 0.0]),
        ([0.0, 0.0, 0.0], ["a", "b", "c"]),
    ],
)
def test_add_rejects_invalid_points(store: PointPairStore, source, target) -> None:
    """Test non-finite or malformed points leave the store unchanged."""
    store.add([1.0, 1.0, 1.0], [1.0, 1.0, 1.0])

    assert store.add(source, target) is False
    assert store.size() == 1
    assert store.tracker.count("add") == 1


def test_get_all_returns_copies(store: PointPairStore) -> None:
    """Test callers cannot mutate stored points through returned pairs."""
    store.add([1.0, 2.0, 3.0], [4.0, 5.0, 6.0])

    pairs = store.get_all()
    pairs[0].source[0] = 100.0
    sources, targets = store.get_points()
    targets[0, 0] = -100.0

    assert np.allclose(store.get_all()[0].source, [1.0, 2.0, 3.0])
    assert np.allclose(store.get_points()[1][0], [4.0, 5.0, 6.0])


def test_get_points_shapes(store: PointPairStore) -> None:
    """Test point arrays are (N, 3), including the empty case."""
    sources, targets = store.get_points()
    assert sources.shape == (0, 3)
    assert targets.shape == (0, 3)

    store.add_many(np.zeros((4, 3)), np.ones((4, 3)))
    sources, targets = store.get_points()
    assert sources.shape == (4, 3)
    assert np.allclose(targets, 1.0)


def test_clear_is_idempotent(store: PointPairStore) -> None:
    """Test clear twice leaves an empty store, and add after clear works."""
    store.add([0.0, 0.0, 0.0], [1.0, 1.0, 1.0])

    store.clear()
    assert store.size() == 0
    store.clear()
    assert store.size() == 0

    assert store.add([2.0, 2.0, 2.0], [3.0, 3.0, 3.0])
    assert store.size() == 1
    assert np.allclose(store.get_all()[0].source, [2.0, 2.0, 2.0])


def test_add_many_skips_bad_rows(store: PointPairStore) -> None:
    """Test bulk add validates each row independently."""
    sources = np.array([[0.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [1.0, 1.0, 1.0]])
    targets = np.zeros((3, 3))

    assert store.add_many(sources, targets) == 2
    assert store.size() == 2


def test_add_many_rejects_mismatched_shapes(store: PointPairStore) -> None:
    """Test bulk add refuses arrays of different shapes."""
    assert store.add_many(np.zeros((3, 3)), np.zeros((2, 3))) == 0
    assert store.size() == 0
    assert store.tracker.count("add_many") == 1
