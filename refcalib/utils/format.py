"""Formatting helpers for arrays written to the log."""

from __future__ import annotations

import numpy as np
import numpy.typing as npt


def format_matrix(arr: npt.ArrayLike, precision: int = 6) -> str:
    """Multi-line rendering of a matrix with fixed precision and no scientific noise."""
    return np.array2string(
        np.asarray(arr, dtype=np.float64), precision=precision, suppress_small=True
    )


def format_vector(values: npt.ArrayLike, precision: int = 6) -> str:
    """Format a 1D array as a bracketed, comma separated list."""
    flat = np.asarray(values, dtype=np.float64).ravel()
    return "[" + ", ".join(f"{v:.{precision}f}" for v in flat) + "]"


__all__ = ["format_matrix", "format_vector"]
