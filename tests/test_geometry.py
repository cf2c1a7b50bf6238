"""Tests for rotation conversions and SE(3) helpers."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.spatial.transform import Rotation as SciRot

from refcalib.core.geometry import (
    axis_angle_from_matrix,
    check_transform,
    is_orthonormal,
    make_transform,
    matrix_from_rpy,
    orthonormalize,
    rotation_angle_between,
    rpy_derivatives,
    rpy_from_matrix,
    similarity_transform,
)
from refcalib.errors import InputError


def test_matrix_from_rpy_matches_scipy() -> None:
    """Test the roll/pitch/yaw convention is scipy's extrinsic xyz."""
    rpy = np.array([0.3, -0.7, 1.9])
    expected = SciRot.from_euler("xyz", rpy).as_matrix()

    assert np.allclose(matrix_from_rpy(rpy), expected)


def test_rpy_round_trip() -> None:
    """Test matrix -> rpy -> matrix away from gimbal lock."""
    rpy = np.array([-2.5, 1.2, 0.4])

    assert np.allclose(rpy_from_matrix(matrix_from_rpy(rpy)), rpy)


def test_rpy_derivatives_match_finite_differences() -> None:
    """Test analytic rotation derivatives against central differences."""
    rpy = np.array([0.4, -0.9, 2.1])
    eps = 1e-6
    analytic = rpy_derivatives(rpy)

    for k in range(3):
        step = np.zeros(3)
        step[k] = eps
        numeric = (matrix_from_rpy(rpy + step) - matrix_from_rpy(rpy - step)) / (2 * eps)
        assert np.allclose(analytic[k], numeric, atol=1e-8)


def test_axis_angle_and_distance() -> None:
    """Test axis-angle extraction and geodesic distance."""
    R = matrix_from_rpy([0.0, 0.0, 0.5])
    angle, axis = axis_angle_from_matrix(R)

    assert angle == pytest.approx(0.5)
    assert np.allclose(axis, [0.0, 0.0, 1.0])
    assert rotation_angle_between(np.eye(3), R) == pytest.approx(0.5)
    assert rotation_angle_between(R, R) == pytest.approx(0.0, abs=1e-12)


def test_orthonormalize_projects_onto_so3() -> None:
    """Test SVD projection repairs a slightly drifted rotation."""
    R = matrix_from_rpy([0.1, 0.2, 0.3]) + 1e-3 * np.ones((3, 3))

    fixed = orthonormalize(R)

    assert not is_orthonormal(R)
    assert is_orthonormal(fixed)
    assert rotation_angle_between(fixed, matrix_from_rpy([0.1, 0.2, 0.3])) < 1e-2


def test_orthonormalize_rejects_reflection() -> None:
    """Test reflections cannot be projected onto SO(3)."""
    with pytest.raises(InputError):
        orthonormalize(np.diag([1.0, 1.0, -1.0]))


def test_check_transform_validation() -> None:
    """Test malformed homogeneous matrices are rejected."""
    with pytest.raises(InputError, match="4x4"):
        check_transform(np.eye(3))

    bad_row = np.eye(4)
    bad_row[3, 0] = 1.0
    with pytest.raises(InputError, match="bottom row"):
        check_transform(bad_row)

    with pytest.raises(InputError, match="non-finite"):
        check_transform(np.full((4, 4), np.nan))


def test_make_transform_layout() -> None:
    """Test make_transform places rotation and translation blocks."""
    H = make_transform([1.0, 2.0, 3.0], [0.0, 0.0, np.pi / 2])

    assert np.allclose(H[:3, 3], [1.0, 2.0, 3.0])
    assert np.allclose(H[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
    assert np.allclose(H[3], [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize("rpy", [(0.1, -0.2, 3.1), (-3.0, 0.3, 0.5), (0.2, 1.5, -0.4)])
def test_similarity_transform_recovers_exact_fit(rpy) -> None:
    """Test the closed-form fit returns the generating rotation, translation and scale."""
    rng = np.random.default_rng(3)
    P = rng.uniform(-1.0, 1.0, size=(6, 3))
    R = matrix_from_rpy(rpy)
    t = np.array([0.4, -0.1, 0.2])
    Q = 1.7 * P @ R.T + t

    R_est, t_est, s_est = similarity_transform(P, Q)

    assert rotation_angle_between(R_est, R) < 1e-8
    assert np.allclose(t_est, t)
    assert s_est == pytest.approx(1.7)


def test_similarity_transform_rigid_never_reflects() -> None:
    """Test a mirrored target still yields a proper rotation with unit scale."""
    P = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    Q = P * np.array([1.0, 1.0, -1.0])

    R, _, s = similarity_transform(P, Q, with_scale=False)

    assert s == 1.0
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_similarity_transform_rejects_mismatch() -> None:
    """Test mismatched point sets are rejected."""
    with pytest.raises(InputError):
        similarity_transform(np.zeros((3, 3)), np.zeros((4, 3)))
