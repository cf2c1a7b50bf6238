"""Bounded least-squares registration between two sets of matched 3D points.

Finds ``H`` in SE(3) and, optionally, a scale ``S`` minimizing the mean
squared residual ``(1/N) * sum ||q_i - S * H * p_i||^2`` subject to box
constraints on translation, roll/pitch/yaw and scale. The rotation uses the
``Rz(yaw) @ Ry(pitch) @ Rx(roll)`` convention from
``refcalib.core.geometry``; its only singular configuration is
``pitch = +-pi/2``.

The seeded optimizer run decides success. When it converges, a few extra
runs may refine it: one from the closed-form similarity fit of the pairs,
and one across every rotation bound the solution rests on when that
angle's box spans a full turn (``-pi`` and ``pi`` are the same angle, so
such a bound is not a real constraint). The lowest residual wins.

Solve failures are returned inside ``RegistrationResult`` rather than
raised, and never touch the session's store or bounds.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np
import numpy.typing as npt

from refcalib.config import ScaleMode, Settings, SolverConfig, get_settings
from refcalib.core.geometry import (
    make_transform,
    matrix_from_rpy,
    rpy_derivatives,
    rpy_from_matrix,
    similarity_transform,
)
from refcalib.errors import ConvergenceError, InputError, InsufficientDataError, RegistrationError
from refcalib.registration.metric import ErrorMetric
from refcalib.registration.optimizer import (
    BoundedOptimizer,
    Objective,
    OptimizerOutcome,
    ScipyBoundedOptimizer,
)
from refcalib.registration.session import RegistrationSession
from refcalib.utils.format import format_matrix, format_vector
from refcalib.utils.logger import get_logger

LOGGER = get_logger(__name__)

Scale = Union[float, npt.NDArray[np.float64]]

FULL_TURN = 2.0 * np.pi
WALL_TOL = 1e-6


@dataclass(slots=True)
class RegistrationResult:
    """Outcome of one solve call.

    ``transform``, ``scale`` and ``error`` are None on failure, in which case
    ``failure`` holds the error that stopped the solve. ``scale`` is None for
    the rigid variant, a float for the scalar variant and a (3,) array for
    the anisotropic one.
    """

    mode: ScaleMode
    success: bool
    n_pairs: int
    transform: Optional[npt.NDArray[np.float64]] = None
    scale: Optional[Scale] = None
    error: Optional[float] = None
    iterations: int = 0
    failure: Optional[RegistrationError] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, mode: ScaleMode, failure: RegistrationError, n_pairs: int) -> RegistrationResult:
        return cls(mode=mode, success=False, n_pairs=n_pairs, failure=failure)

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise self.failure

    @property
    def rotation(self) -> npt.NDArray[np.float64]:
        self.raise_for_failure()
        return self.transform[:3, :3]

    @property
    def translation(self) -> npt.NDArray[np.float64]:
        self.raise_for_failure()
        return self.transform[:3, 3]

    @property
    def rpy(self) -> npt.NDArray[np.float64]:
        """Rotation as (roll, pitch, yaw) in radians."""
        return rpy_from_matrix(self.rotation)

    @property
    def scale_axes(self) -> npt.NDArray[np.float64]:
        self.raise_for_failure()
        if self.scale is None:
            return np.ones(3)
        return np.broadcast_to(np.asarray(self.scale, dtype=np.float64), (3,)).copy()

    def apply(self, points: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Map (N, 3) source-frame points into the target frame through ``S * H``."""
        P = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return (P @ self.rotation.T + self.translation) * self.scale_axes

    def __repr__(self) -> str:
        if not self.success:
            return (
                f"RegistrationResult({self.mode.value}, failed: "
                f"{type(self.failure).__name__}: {self.failure})"
            )
        return (
            f"RegistrationResult({self.mode.value}, "
            f"error={self.error:.3e}, pairs={self.n_pairs}, iterations={self.iterations})"
        )


def _split(
    x: npt.NDArray[np.float64], mode: ScaleMode
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Split a parameter vector into translation, rpy and per-axis scale."""
    if mode is ScaleMode.SCALAR:
        s = np.full(3, x[6])
    elif mode is ScaleMode.ANISOTROPIC:
        s = x[6:9]
    else:
        s = np.ones(3)
    return x[:3], x[3:6], s


def _wall_crossing(
    x: npt.NDArray[np.float64], lower: npt.NDArray[np.float64], upper: npt.NDArray[np.float64]
) -> Optional[npt.NDArray[np.float64]]:
    """Same rotation with every angle resting on a full-turn bound moved to the opposite bound."""
    crossed = x.copy()
    moved = False
    for k in range(3, 6):
        if upper[k] - lower[k] < FULL_TURN - 1e-9:
            continue
        if x[k] - lower[k] <= WALL_TOL:
            crossed[k] += FULL_TURN
            moved = True
        elif upper[k] - x[k] <= WALL_TOL:
            crossed[k] -= FULL_TURN
            moved = True
    if not moved:
        return None
    return np.clip(crossed, lower, upper)


def _is_collinear(points: npt.NDArray[np.float64], tol: float) -> bool:
    centred = points - points.mean(axis=0)
    sv = np.linalg.svd(centred, compute_uv=False)
    return bool(sv[0] <= 0.0 or sv[1] <= tol * sv[0])


class RegistrationSolver:
    """Formulates the registration problem and drives a bounded optimizer.

    Args:
        optimizer: engine satisfying ``BoundedOptimizer``; defaults to a
            ``ScipyBoundedOptimizer`` built from ``settings.optimizer``
        settings: package settings; defaults to ``get_settings()``
    """

    def __init__(
        self,
        optimizer: BoundedOptimizer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.optimizer = optimizer or ScipyBoundedOptimizer(self.settings.optimizer)

    @property
    def solver_config(self) -> SolverConfig:
        return self.settings.solver

    # ────────────── entry points ──────────────
    def calibrate(self, session: RegistrationSession) -> RegistrationResult:
        """Rigid registration: free translation and rotation, unit scale."""
        return self.solve(session, ScaleMode.NONE)

    def calibrate_scalar(self, session: RegistrationSession) -> RegistrationResult:
        """Rigid registration plus one uniform scale factor."""
        return self.solve(session, ScaleMode.SCALAR)

    def calibrate_anisotropic(self, session: RegistrationSession) -> RegistrationResult:
        """Rigid registration plus independent x/y/z scale factors."""
        return self.solve(session, ScaleMode.ANISOTROPIC)

    def solve(self, session: RegistrationSession, mode: ScaleMode | str) -> RegistrationResult:
        """Run one solve; blocks other threads from mutating the session meanwhile."""
        mode = ScaleMode(mode)
        with session.locked():
            n_pairs = session.store.size()
            LOGGER.tag("SOLVE", f"{session.name}: {mode.value} scale, {n_pairs} pairs")
            try:
                result = self._solve(session, mode)
            except RegistrationError as exc:
                session.tracker.record_exception(f"solve[{mode.value}]", exc)
                return RegistrationResult.failed(mode, exc, n_pairs)
        LOGGER.info("Solved {} registration: {}", mode.value, result)
        return result

    # ────────────── internals ──────────────
    def closed_form_seed(
        self, metric: ErrorMetric, session: RegistrationSession, mode: ScaleMode
    ) -> npt.NDArray[np.float64]:
        """Feasible parameter vector from the closed-form similarity fit of the pairs.

        Exact for noise-free rigid and scalar-scale data; the per-axis variant
        starts from the uniform-scale fit.
        """
        R, _, s = similarity_transform(
            metric.sources, metric.targets, with_scale=mode is not ScaleMode.NONE
        )
        bounds = session.bounds
        lower, upper = bounds.lower(mode), bounds.upper(mode)
        H = np.eye(4)
        H[:3, :3] = R
        x = np.clip(bounds.parameter_vector(H, mode, s), lower, upper)
        # translation refit to the centroids under the clipped scale
        _, _, s_axes = _split(x, mode)
        x[:3] = metric.targets.mean(axis=0) / s_axes - R @ metric.sources.mean(axis=0)
        return np.clip(x, lower, upper)

    def _refine(
        self,
        objective: Objective,
        best: OptimizerOutcome,
        starts: list[tuple[str, npt.NDArray[np.float64]]],
        lower: npt.NDArray[np.float64],
        upper: npt.NDArray[np.float64],
        started: float,
    ) -> tuple[OptimizerOutcome, list[dict[str, Any]]]:
        """Run the extra starts within the restart and time budgets; keep the lowest residual."""
        budget = self.settings.optimizer.max_time_s
        tried = [best.x]
        pending = list(starts)
        crossing = _wall_crossing(best.x, lower, upper)
        if crossing is not None:
            pending.insert(0, ("wall", crossing))

        runs: list[dict[str, Any]] = []
        while pending and len(runs) < self.solver_config.max_restarts:
            if time.monotonic() - started >= budget:
                LOGGER.warning("Time budget spent, skipping {} remaining restarts", len(pending))
                break
            label, x0 = pending.pop(0)
            if any(np.allclose(x0, seen, rtol=0.0, atol=1e-9) for seen in tried):
                continue
            tried.append(x0)
            try:
                outcome = self.optimizer.minimize(objective, x0, lower, upper)
            except ConvergenceError as exc:
                LOGGER.warning("Restart from {} start failed: {}", label, exc)
                runs.append({"start": label, "converged": False, "value": None})
                continue
            runs.append({"start": label, "converged": outcome.converged, "value": outcome.value})
            if not outcome.converged:
                LOGGER.debug("Restart from {} start did not converge: {}", label, outcome.message)
                continue
            if outcome.value < best.value:
                LOGGER.info(
                    "Restart from {} start lowered the residual {:.3e} -> {:.3e}",
                    label,
                    best.value,
                    outcome.value,
                )
                best = outcome
            crossing = _wall_crossing(outcome.x, lower, upper)
            if crossing is not None:
                pending.append(("wall", crossing))
        return best, runs

    def check_data(self, metric: ErrorMetric) -> None:
        """Raise InsufficientDataError unless the pairs pin down a unique rotation."""
        cfg = self.solver_config
        n = metric.n_pairs
        if n < cfg.min_pairs:
            raise InsufficientDataError(f"{n} pairs available, at least {cfg.min_pairs} required")
        for name, points in (("source", metric.sources), ("target", metric.targets)):
            if _is_collinear(points, cfg.collinearity_tol):
                raise InsufficientDataError(f"{name} points are collinear")

    def _solve(self, session: RegistrationSession, mode: ScaleMode) -> RegistrationResult:
        started = time.monotonic()
        bounds = session.bounds
        if not bounds.is_valid():
            raise InputError("Bounds failed validation")

        metric = ErrorMetric.from_store(session.store)
        self.check_data(metric)

        lower, upper = bounds.lower(mode), bounds.upper(mode)
        x0, clamped = bounds.initial_point(mode)

        def objective(x: npt.NDArray[np.float64]) -> tuple[float, npt.NDArray[np.float64]]:
            t, rpy, s = _split(x, mode)
            value, g_rot, g_t, g_s = metric.value_and_gradient(
                matrix_from_rpy(rpy), rpy_derivatives(rpy), t, s
            )
            if mode is ScaleMode.SCALAR:
                return value, np.concatenate([g_t, g_rot, [g_s.sum()]])
            if mode is ScaleMode.ANISOTROPIC:
                return value, np.concatenate([g_t, g_rot, g_s])
            return value, np.concatenate([g_t, g_rot])

        LOGGER.debug("Seed {} within [{}, {}]", format_vector(x0), format_vector(lower), format_vector(upper))
        first = self.optimizer.minimize(objective, x0, lower, upper)
        if not first.converged:
            raise ConvergenceError(
                f"Optimizer did not converge after {first.iterations} iterations: {first.message}"
            )
        outcome, restarts = self._refine(
            objective,
            first,
            [("closed_form", self.closed_form_seed(metric, session, mode))],
            lower,
            upper,
            started,
        )

        t, rpy, s = _split(outcome.x, mode)
        transform = make_transform(t, rpy)
        scale: Optional[Scale]
        if mode is ScaleMode.SCALAR:
            scale = float(s[0])
        elif mode is ScaleMode.ANISOTROPIC:
            scale = s.copy()
        else:
            scale = None
        error = metric.evaluate(transform, scale)

        LOGGER.debug("Transform:\n{}", format_matrix(transform))
        if scale is not None:
            LOGGER.debug("Scale: {}", format_vector(np.atleast_1d(scale)))

        at_bound = np.flatnonzero(np.isclose(outcome.x, lower) | np.isclose(outcome.x, upper))
        if at_bound.size:
            LOGGER.warning("Solution lies on the bounds at indices {}", at_bound.tolist())

        return RegistrationResult(
            mode=mode,
            success=True,
            n_pairs=metric.n_pairs,
            transform=transform,
            scale=scale,
            error=error,
            iterations=outcome.iterations,
            metadata={
                "seed_clamped": clamped,
                "parameters": outcome.x.copy(),
                "active_bounds": at_bound.tolist(),
                "evaluations": outcome.evaluations,
                "restarts": restarts,
                "optimizer_message": outcome.message,
                "max_residual": float(metric.residuals(transform, scale).max()),
            },
        )


__all__ = ["RegistrationResult", "RegistrationSolver"]
