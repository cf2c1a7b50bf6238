"""Box constraints and initial guesses for the registration parameters.

Parameter vector layout, shared with the solver::

    [tx, ty, tz, roll, pitch, yaw]            ScaleMode.NONE
    [tx, ty, tz, roll, pitch, yaw, s]         ScaleMode.SCALAR
    [tx, ty, tz, roll, pitch, yaw, s1, s2, s3] ScaleMode.ANISOTROPIC

Seeds are not checked against the box when they are set. At solve time
``initial_point`` projects the seed onto the box and logs a warning when
the projection moved it.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import numpy as np
import numpy.typing as npt

from refcalib.config import BoundsConfig, ScaleMode
from refcalib.core.geometry import check_transform, rpy_from_matrix
from refcalib.errors import InputError
from refcalib.utils.error_tracker import ErrorTracker
from refcalib.utils.format import format_vector
from refcalib.utils.logger import get_logger

LOGGER = get_logger(__name__)


def _as_vector(value: npt.ArrayLike, size: int, name: str) -> npt.NDArray[np.float64]:
    try:
        vec = np.array(value, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{name} is not numeric: {exc}") from exc
    if vec.shape != (size,):
        raise InputError(f"{name} must have {size} components, got {vec.shape[0]}")
    if not np.all(np.isfinite(vec)):
        raise InputError(f"{name} has non-finite components: {vec.tolist()}")
    return vec


def _check_box(
    lower: npt.NDArray[np.float64], upper: npt.NDArray[np.float64], *, positive: bool = False
) -> None:
    if not (np.all(np.isfinite(lower)) and np.all(np.isfinite(upper))):
        raise InputError(f"Bounds must be finite, got min={lower.tolist()} max={upper.tolist()}")
    bad = np.flatnonzero(lower > upper)
    if bad.size:
        raise InputError(f"min > max at indices {bad.tolist()}")
    if positive and np.any(lower <= 0.0):
        raise InputError(f"Scale bounds must be strictly positive, got min={lower.tolist()}")


def _sized(vec: npt.NDArray[np.float64], mode: ScaleMode) -> npt.NDArray[np.float64]:
    if vec.size != mode.n_params:
        raise InputError(f"{mode.value} parameter vector needs {mode.n_params} entries, got {vec.size}")
    return vec


def _wrap(angles: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return (angles + np.pi) % (2.0 * np.pi) - np.pi


def _rpy_candidates(R: npt.NDArray[np.float64]) -> list[npt.NDArray[np.float64]]:
    """Both roll/pitch/yaw triples producing ``R``, plus their 2*pi shifts on the box edge."""
    roll, pitch, yaw = rpy_from_matrix(R)
    primary = np.array([roll, pitch, yaw])
    alternate = _wrap(np.array([roll + np.pi, np.pi - pitch, yaw + np.pi]))
    candidates = [primary, alternate]
    for base in (primary, alternate):
        for k in range(3):
            for shift in (-2.0 * np.pi, 2.0 * np.pi):
                shifted = base.copy()
                shifted[k] += shift
                candidates.append(shifted)
    return candidates


def _closest_rpy(
    R: npt.NDArray[np.float64], lower: npt.NDArray[np.float64], upper: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    candidates = _rpy_candidates(R)
    distances = [float(np.sum((np.clip(c, lower, upper) - c) ** 2)) for c in candidates]
    return candidates[int(np.argmin(distances))]


class ParameterBounds:
    """Box constraints and seeds for translation, rotation and scale.

    The scalar and per-axis scale boxes (and seeds) are stored independently;
    which one applies depends on the scale mode of the solve.

    Raises:
        InputError: if ``config`` holds a malformed or inconsistent box
    """

    def __init__(self, config: BoundsConfig | None = None, tracker: ErrorTracker | None = None) -> None:
        cfg = config or BoundsConfig()
        self._lock = threading.RLock()
        self.tracker = tracker or ErrorTracker(context="refcalib.bounds")

        self._min = _as_vector(cfg.transform_min, 6, "transform_min")
        self._max = _as_vector(cfg.transform_max, 6, "transform_max")
        self._min_s_scalar = float(_as_vector(cfg.scale_min, 1, "scale_min")[0])
        self._max_s_scalar = float(_as_vector(cfg.scale_max, 1, "scale_max")[0])
        self._min_s = _as_vector(cfg.scale_axes_min, 3, "scale_axes_min")
        self._max_s = _as_vector(cfg.scale_axes_max, 3, "scale_axes_max")
        self._check_boxes()

        self._guess = np.eye(4)
        self._s0_scalar = 1.0
        self._s0 = np.ones(3)

    # ────────────── box setters ──────────────
    def set_transform_bounds(self, min6: npt.ArrayLike, max6: npt.ArrayLike) -> bool:
        """Set bounds on (tx, ty, tz, roll, pitch, yaw); False leaves them unchanged."""
        try:
            lower = _as_vector(min6, 6, "min")
            upper = _as_vector(max6, 6, "max")
            _check_box(lower, upper)
        except InputError as exc:
            self.tracker.record_exception("set_transform_bounds", exc)
            return False
        with self._lock:
            self._min, self._max = lower, upper
        LOGGER.info("Transform bounds set: min={} max={}", format_vector(lower), format_vector(upper))
        return True

    def set_scale_bounds(self, min_s: npt.ArrayLike, max_s: npt.ArrayLike) -> bool:
        """Set scale bounds: two floats for the scalar box, two 3-vectors per axis."""
        scalar = np.ndim(min_s) == 0 and np.ndim(max_s) == 0
        size = 1 if scalar else 3
        try:
            lower = _as_vector(min_s, size, "min")
            upper = _as_vector(max_s, size, "max")
            _check_box(lower, upper, positive=True)
        except InputError as exc:
            self.tracker.record_exception("set_scale_bounds", exc)
            return False
        with self._lock:
            if scalar:
                self._min_s_scalar, self._max_s_scalar = float(lower[0]), float(upper[0])
            else:
                self._min_s, self._max_s = lower, upper
        LOGGER.info(
            "{} scale bounds set: min={} max={}",
            "Scalar" if scalar else "Per-axis",
            format_vector(lower),
            format_vector(upper),
        )
        return True

    # ────────────── seed setters ──────────────
    def set_initial_guess(self, transform: npt.ArrayLike) -> bool:
        """Set the seed transform; a drifted rotation block is re-orthonormalized."""
        try:
            H = check_transform(transform)
        except InputError as exc:
            self.tracker.record_exception("set_initial_guess", exc)
            return False
        if not np.allclose(H, np.asarray(transform, dtype=np.float64), atol=1e-9):
            LOGGER.warning("Initial guess rotation was not orthonormal, projected onto SO(3)")
        with self._lock:
            self._guess = H
        return True

    def set_scale_initial_guess(self, scale: npt.ArrayLike) -> bool:
        """Set the scale seed: a float for scalar mode, a 3-vector for per-axis mode."""
        scalar = np.ndim(scale) == 0
        try:
            s = _as_vector(scale, 1 if scalar else 3, "scale")
            if np.any(s <= 0.0):
                raise InputError(f"Scale must be strictly positive, got {s.tolist()}")
        except InputError as exc:
            self.tracker.record_exception("set_scale_initial_guess", exc)
            return False
        with self._lock:
            if scalar:
                self._s0_scalar = float(s[0])
            else:
                self._s0 = s
        return True

    # ────────────── accessors ──────────────
    @property
    def transform_bounds(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        with self._lock:
            return self._min.copy(), self._max.copy()

    @property
    def scalar_scale_bounds(self) -> tuple[float, float]:
        with self._lock:
            return self._min_s_scalar, self._max_s_scalar

    @property
    def axes_scale_bounds(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        with self._lock:
            return self._min_s.copy(), self._max_s.copy()

    @property
    def initial_guess(self) -> npt.NDArray[np.float64]:
        with self._lock:
            return self._guess.copy()

    @property
    def scalar_scale_guess(self) -> float:
        with self._lock:
            return self._s0_scalar

    @property
    def axes_scale_guess(self) -> npt.NDArray[np.float64]:
        with self._lock:
            return self._s0.copy()

    def _check_boxes(self) -> None:
        _check_box(self._min, self._max)
        _check_box(np.array([self._min_s_scalar]), np.array([self._max_s_scalar]), positive=True)
        _check_box(self._min_s, self._max_s, positive=True)

    def is_valid(self) -> bool:
        """Re-check every stored box."""
        with self._lock:
            try:
                self._check_boxes()
            except InputError as exc:
                self.tracker.record_exception("is_valid", exc)
                return False
            return True

    # ────────────── parameter-vector views ──────────────
    def lower(self, mode: ScaleMode) -> npt.NDArray[np.float64]:
        with self._lock:
            if mode is ScaleMode.SCALAR:
                return _sized(np.concatenate([self._min, [self._min_s_scalar]]), mode)
            if mode is ScaleMode.ANISOTROPIC:
                return _sized(np.concatenate([self._min, self._min_s]), mode)
            return _sized(self._min.copy(), mode)

    def upper(self, mode: ScaleMode) -> npt.NDArray[np.float64]:
        with self._lock:
            if mode is ScaleMode.SCALAR:
                return _sized(np.concatenate([self._max, [self._max_s_scalar]]), mode)
            if mode is ScaleMode.ANISOTROPIC:
                return _sized(np.concatenate([self._max, self._max_s]), mode)
            return _sized(self._max.copy(), mode)

    def parameter_vector(
        self,
        transform: npt.ArrayLike,
        mode: ScaleMode,
        scale: float | npt.ArrayLike | None = None,
    ) -> npt.NDArray[np.float64]:
        """Parameter vector of ``transform`` and ``scale`` in the layout of ``mode``.

        Of the roll/pitch/yaw triples describing the rotation, the one closest
        to the rotation box is used. ``scale`` is ignored for ``ScaleMode.NONE``.
        """
        H = np.asarray(transform, dtype=np.float64)
        with self._lock:
            rpy = _closest_rpy(H[:3, :3], self._min[3:], self._max[3:])
        x = np.concatenate([H[:3, 3], rpy])
        if mode is ScaleMode.SCALAR:
            x = np.concatenate([x, [float(np.mean(scale))]])
        elif mode is ScaleMode.ANISOTROPIC:
            x = np.concatenate([x, np.broadcast_to(np.asarray(scale, dtype=np.float64), (3,))])
        return _sized(x, mode)

    def seed(self, mode: ScaleMode) -> npt.NDArray[np.float64]:
        """Unclamped seed vector built from the initial guesses."""
        with self._lock:
            if mode is ScaleMode.SCALAR:
                scale = self._s0_scalar
            elif mode is ScaleMode.ANISOTROPIC:
                scale = self._s0
            else:
                scale = None
            return self.parameter_vector(self._guess, mode, scale)

    def initial_point(self, mode: ScaleMode) -> tuple[npt.NDArray[np.float64], bool]:
        """Seed projected onto the box, and whether the projection moved it."""
        x0 = self.seed(mode)
        lower, upper = self.lower(mode), self.upper(mode)
        clamped = np.clip(x0, lower, upper)
        moved = bool(np.any(clamped != x0))
        if moved:
            idx = np.flatnonzero(clamped != x0).tolist()
            LOGGER.warning(
                "Initial guess outside bounds at indices {}, clamped {} -> {}",
                idx,
                format_vector(x0[idx]),
                format_vector(clamped[idx]),
            )
        return clamped, moved

    @contextmanager
    def locked(self) -> Iterator[ParameterBounds]:
        """Hold exclusive access to the bounds for the duration of the block."""
        with self._lock:
            yield self

    def __repr__(self) -> str:
        lower, upper = self.transform_bounds
        return f"ParameterBounds(min={lower.tolist()}, max={upper.tolist()})"


__all__ = ["ParameterBounds"]
