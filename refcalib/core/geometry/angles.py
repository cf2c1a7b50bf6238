"""Rotation matrix conversions: roll/pitch/yaw, derivatives, SE(3) helpers.

Convention: ``R = Rz(yaw) @ Ry(pitch) @ Rx(roll)`` (extrinsic x-y-z, the
scipy ``"xyz"`` sequence). The parameterization is singular at
``pitch = +-pi/2`` where roll and yaw rotate about the same axis.
"""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np
import numpy.typing as npt
from scipy.spatial.transform import Rotation as SciRot

from refcalib.errors import InputError

RPY_SEQ = "xyz"
ORTHONORMAL_TOL = 1e-9


def _rx(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _ry(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _rz(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _drx(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[0.0, 0.0, 0.0], [0.0, -s, -c], [0.0, c, -s]])


def _dry(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[-s, 0.0, c], [0.0, 0.0, 0.0], [-c, 0.0, -s]])


def _drz(a: float) -> npt.NDArray[np.float64]:
    c, s = np.cos(a), np.sin(a)
    return np.array([[-s, -c, 0.0], [c, -s, 0.0], [0.0, 0.0, 0.0]])


def matrix_from_rpy(rpy: Iterable[float]) -> npt.NDArray[np.float64]:
    """Convert roll/pitch/yaw in radians to a 3x3 rotation matrix."""
    roll, pitch, yaw = (float(v) for v in rpy)
    return _rz(yaw) @ _ry(pitch) @ _rx(roll)


def rpy_from_matrix(R: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Convert a rotation matrix to roll/pitch/yaw in radians.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Array ``(roll, pitch, yaw)`` with pitch in ``[-pi/2, pi/2]``
    """
    return SciRot.from_matrix(R).as_euler(RPY_SEQ, degrees=False)


def rpy_derivatives(rpy: Iterable[float]) -> npt.NDArray[np.float64]:
    """Partial derivatives of ``matrix_from_rpy`` with respect to each angle.

    Returns:
        Array of shape (3, 3, 3); entry ``k`` is ``dR/d(rpy[k])``
    """
    roll, pitch, yaw = (float(v) for v in rpy)
    rx, ry, rz = _rx(roll), _ry(pitch), _rz(yaw)
    return np.stack(
        [
            rz @ ry @ _drx(roll),
            rz @ _dry(pitch) @ rx,
            _drz(yaw) @ ry @ rx,
        ]
    )


def axis_angle_from_matrix(R: npt.NDArray[np.float64]) -> tuple[float, npt.NDArray[np.float64]]:
    """Convert rotation matrix to axis-angle representation.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Tuple of (angle_radians, axis_unit_vector)
    """
    rotvec = SciRot.from_matrix(R).as_rotvec()
    angle = float(np.linalg.norm(rotvec))
    if angle > 1e-12:
        axis = rotvec / angle
    else:
        axis = np.array([0.0, 0.0, 1.0])  # arbitrary axis for zero rotation
    return angle, axis


def rotation_angle_between(
    R_a: npt.NDArray[np.float64], R_b: npt.NDArray[np.float64]
) -> float:
    """Geodesic distance in radians between two rotation matrices."""
    angle, _ = axis_angle_from_matrix(np.asarray(R_a).T @ np.asarray(R_b))
    return angle


def orthonormalize(R: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Project a 3x3 matrix onto SO(3) (closest rotation in Frobenius norm).

    Raises:
        InputError: if the matrix is singular or a reflection
    """
    R = np.asarray(R, dtype=np.float64)
    if np.linalg.det(R) <= 0.0:
        raise InputError("Rotation block has non-positive determinant")
    u, _, vt = np.linalg.svd(R)
    return u @ vt


def is_orthonormal(R: npt.NDArray[np.float64], tol: float = ORTHONORMAL_TOL) -> bool:
    R = np.asarray(R, dtype=np.float64)
    return bool(
        np.allclose(R.T @ R, np.eye(3), atol=tol) and abs(np.linalg.det(R) - 1.0) <= tol
    )


def make_transform(
    translation: Iterable[float], rpy: Iterable[float]
) -> npt.NDArray[np.float64]:
    """Build a 4x4 homogeneous transform from translation and roll/pitch/yaw."""
    transform = np.eye(4)
    transform[:3, :3] = matrix_from_rpy(rpy)
    transform[:3, 3] = np.asarray(list(translation), dtype=np.float64)
    return transform


def check_transform(transform: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Validate a 4x4 homogeneous transform and return it as float64.

    The rotation block is re-orthonormalized when it drifts from SO(3);
    the caller can compare the result against its input to detect this.

    Raises:
        InputError: wrong shape, non-finite entries, bad bottom row,
            singular or reflecting rotation block
    """
    H = np.array(transform, dtype=np.float64)
    if H.shape != (4, 4):
        raise InputError(f"Transform must be 4x4, got {H.shape}")
    if not np.all(np.isfinite(H)):
        raise InputError("Transform contains non-finite values")
    if not np.allclose(H[3], [0.0, 0.0, 0.0, 1.0]):
        raise InputError(f"Transform bottom row must be [0, 0, 0, 1], got {H[3].tolist()}")
    if not is_orthonormal(H[:3, :3]):
        H[:3, :3] = orthonormalize(H[:3, :3])
    H[3] = (0.0, 0.0, 0.0, 1.0)
    return H


__all__ = [
    "RPY_SEQ",
    "axis_angle_from_matrix",
    "check_transform",
    "is_orthonormal",
    "make_transform",
    "matrix_from_rpy",
    "orthonormalize",
    "rotation_angle_between",
    "rpy_derivatives",
    "rpy_from_matrix",
]
