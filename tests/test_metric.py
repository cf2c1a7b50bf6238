"""Tests for the residual metric and its gradient."""

from __future__ import annotations

import numpy as np
import pytest

from refcalib.core.geometry import make_transform, matrix_from_rpy, rpy_derivatives
from refcalib.errors import InputError, InsufficientDataError
from refcalib.registration import ErrorMetric, PointPairStore


def test_empty_store_raises() -> None:
    """Test the metric signals an error instead of returning zero on no data."""
    metric = ErrorMetric.from_store(PointPairStore())

    with pytest.raises(InsufficientDataError):
        metric.evaluate(np.eye(4))


def test_exact_transform_gives_zero(true_transform: np.ndarray, rng: np.random.Generator) -> None:
    """Test the residual vanishes at the generating transform and scale."""
    sources = rng.uniform(-1, 1, size=(6, 3))
    scale = np.array([1.2, 0.8, 1.1])
    targets = (sources @ true_transform[:3, :3].T + true_transform[:3, 3]) * scale
    metric = ErrorMetric(sources, targets)

    assert metric.evaluate(true_transform, scale) == pytest.approx(0.0, abs=1e-24)
    assert metric.evaluate(true_transform) > 1e-3


def test_known_residual_value() -> None:
    """Test the mean squared residual on a hand-computed case."""
    store = PointPairStore()
    store.add([0.0, 0.0, 0.0], [1.0, 0.0, 0.0])
    store.add([1.0, 0.0, 0.0], [1.0, 0.0, 0.0])
    metric = ErrorMetric.from_store(store)

    # identity: residuals of length 1 and 0
    assert metric.evaluate(np.eye(4)) == pytest.approx(0.5)
    assert np.allclose(metric.residuals(np.eye(4)), [1.0, 0.0])
    # uniform scale 2 maps the second source to (2, 0, 0)
    assert metric.evaluate(np.eye(4), 2.0) == pytest.approx((1.0 + 1.0) / 2)


def test_scale_is_applied_after_translation() -> None:
    """Test scale acts on the rotated and translated point."""
    metric = ErrorMetric([[1.0, 0.0, 0.0]], [[4.0, 0.0, 0.0]])
    H = make_transform([1.0, 0.0, 0.0], [0.0, 0.0, 0.0])

    assert metric.evaluate(H, 2.0) == pytest.approx(0.0)


def test_invalid_scale_rejected() -> None:
    """Test non-positive or mis-shaped scales raise InputError."""
    metric = ErrorMetric([[1.0, 0.0, 0.0]], [[1.0, 0.0, 0.0]])

    with pytest.raises(InputError):
        metric.evaluate(np.eye(4), 0.0)
    with pytest.raises(InputError):
        metric.evaluate(np.eye(4), [1.0, 1.0])


def test_mismatched_arrays_rejected() -> None:
    """Test source and target arrays must pair up."""
    with pytest.raises(InputError):
        ErrorMetric(np.zeros((3, 3)), np.zeros((2, 3)))


def test_gradient_matches_finite_differences(rng: np.random.Generator) -> None:
    """Test analytic gradient against central differences in all 9 parameters."""
    sources = rng.uniform(-1, 1, size=(7, 3))
    targets = rng.uniform(-1, 1, size=(7, 3))
    metric = ErrorMetric(sources, targets)
    x = np.array([0.1, -0.2, 0.3, 0.4, -0.5, 0.6, 1.1, 0.9, 1.3])

    def f(params: np.ndarray) -> float:
        return metric.evaluate(make_transform(params[:3], params[3:6]), params[6:9])

    value, g_rot, g_t, g_s = metric.value_and_gradient(
        matrix_from_rpy(x[3:6]), rpy_derivatives(x[3:6]), x[:3], x[6:9]
    )
    analytic = np.concatenate([g_t, g_rot, g_s])

    eps = 1e-6
    numeric = np.zeros(9)
    for k in range(9):
        step = np.zeros(9)
        step[k] = eps
        numeric[k] = (f(x + step) - f(x - step)) / (2 * eps)

    assert value == pytest.approx(f(x))
    assert np.allclose(analytic, numeric, rtol=1e-5, atol=1e-7)
