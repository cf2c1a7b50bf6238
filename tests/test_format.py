"""Tests for log formatting helpers."""

from __future__ import annotations

import numpy as np

from refcalib.utils import format_matrix, format_vector


def test_format_vector() -> None:
    """Test vectors render as a comma separated list at fixed precision."""
    assert format_vector([1.0, -0.5], precision=2) == "[1.00, -0.50]"


def test_format_matrix_leaves_print_options_alone() -> None:
    """Test matrices render with small values suppressed and global options untouched."""
    before = np.get_printoptions()

    text = format_matrix(np.array([[1.0, 1e-12], [0.0, 2.0]]), precision=3)

    assert "e-" not in text
    assert text.count("\n") == 1
    assert np.get_printoptions() == before
