"""Mean squared residual between target points and mapped source points.

For a transform ``H = [R | t]`` and a scale ``S`` (identity, ``s * I`` or
``diag(s1, s2, s3)``) the residual is::

    f = (1/N) * sum_i || q_i - S (R p_i + t) ||^2

The scale acts on the rotated and translated point, in the target frame.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import numpy.typing as npt

from refcalib.core.geometry import check_transform
from refcalib.errors import InputError, InsufficientDataError
from refcalib.registration.store import PointPairStore

ScaleLike = Union[None, float, npt.ArrayLike]


def scale_vector(scale: ScaleLike) -> npt.NDArray[np.float64]:
    """Expand ``None``, a float or a 3-vector into per-axis scale factors."""
    if scale is None:
        return np.ones(3)
    s = np.array(scale, dtype=np.float64).reshape(-1)
    if s.shape == (1,):
        s = np.repeat(s, 3)
    if s.shape != (3,):
        raise InputError(f"Scale must be a float or a 3-vector, got shape {s.shape}")
    if not np.all(np.isfinite(s)) or np.any(s <= 0.0):
        raise InputError(f"Scale must be finite and strictly positive, got {s.tolist()}")
    return s


class ErrorMetric:
    """Residual evaluator over a fixed snapshot of correspondence pairs."""

    def __init__(self, sources: npt.ArrayLike, targets: npt.ArrayLike) -> None:
        self._p = np.array(sources, dtype=np.float64).reshape(-1, 3)
        self._q = np.array(targets, dtype=np.float64).reshape(-1, 3)
        if self._p.shape != self._q.shape:
            raise InputError(
                f"Source and target arrays differ in shape: {self._p.shape} vs {self._q.shape}"
            )

    @classmethod
    def from_store(cls, store: PointPairStore) -> ErrorMetric:
        sources, targets = store.get_points()
        return cls(sources, targets)

    @property
    def n_pairs(self) -> int:
        return self._p.shape[0]

    @property
    def sources(self) -> npt.NDArray[np.float64]:
        return self._p

    @property
    def targets(self) -> npt.NDArray[np.float64]:
        return self._q

    def _require_data(self) -> None:
        if self.n_pairs == 0:
            raise InsufficientDataError("Residual is undefined on an empty point set")

    def _residual_vectors(
        self, transform: npt.ArrayLike, scale: ScaleLike
    ) -> npt.NDArray[np.float64]:
        self._require_data()
        H = check_transform(transform)
        s = scale_vector(scale)
        mapped = (self._p @ H[:3, :3].T + H[:3, 3]) * s
        return self._q - mapped

    def evaluate(self, transform: npt.ArrayLike, scale: ScaleLike = None) -> float:
        """Mean squared residual of ``transform`` (and ``scale``) over all pairs.

        Raises:
            InsufficientDataError: if there are no pairs
            InputError: on a malformed transform or scale
        """
        res = self._residual_vectors(transform, scale)
        return float(np.sum(res * res) / self.n_pairs)

    def residuals(self, transform: npt.ArrayLike, scale: ScaleLike = None) -> npt.NDArray[np.float64]:
        """Per-pair Euclidean residual norms, in insertion order."""
        return np.linalg.norm(self._residual_vectors(transform, scale), axis=1)

    def value_and_gradient(
        self,
        rotation: npt.NDArray[np.float64],
        rotation_derivatives: npt.NDArray[np.float64],
        translation: npt.NDArray[np.float64],
        scale: npt.NDArray[np.float64],
    ) -> tuple[float, npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Objective value and its partial derivatives.

        Inputs are trusted (no validation): this runs at every optimizer
        iteration.

        Args:
            rotation: 3x3 rotation matrix
            rotation_derivatives: (k, 3, 3) derivatives of ``rotation`` with
                respect to each of its k parameters
            translation: 3-vector
            scale: per-axis scale factors, shape (3,)

        Returns:
            ``(f, df/d_rotation_params, df/dt, df/ds_axes)``; the scalar-scale
            derivative is the sum of the per-axis one.
        """
        self._require_data()
        n = self.n_pairs
        moved = self._p @ rotation.T + translation
        res = self._q - moved * scale
        value = float(np.sum(res * res) / n)

        weighted = res * scale
        grad_t = -2.0 / n * weighted.sum(axis=0)
        grad_rot = np.array(
            [-2.0 / n * float(np.sum(weighted * (self._p @ dR.T))) for dR in rotation_derivatives]
        )
        grad_s = -2.0 / n * np.sum(res * moved, axis=0)
        return value, grad_rot, grad_t, grad_s


__all__ = ["ErrorMetric", "scale_vector"]
