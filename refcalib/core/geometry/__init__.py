"""Geometric transformations and rotation utilities."""

from __future__ import annotations

from refcalib.core.geometry.alignment import similarity_transform
from refcalib.core.geometry.angles import (
    axis_angle_from_matrix,
    check_transform,
    is_orthonormal,
    make_transform,
    matrix_from_rpy,
    orthonormalize,
    rotation_angle_between,
    rpy_derivatives,
    rpy_from_matrix,
)

__all__ = [
    "axis_angle_from_matrix",
    "check_transform",
    "is_orthonormal",
    "make_transform",
    "matrix_from_rpy",
    "orthonormalize",
    "rotation_angle_between",
    "rpy_derivatives",
    "rpy_from_matrix",
    "similarity_transform",
]
