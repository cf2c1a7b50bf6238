"""Adapter between the registration problem and a bounded NLP engine.

The solver only needs a "bounded differentiable optimizer": something that
minimizes a scalar objective with a known gradient over a box, starting
from a feasible point. ``BoundedOptimizer`` is that capability;
``ScipyBoundedOptimizer`` implements it on top of ``scipy.optimize.minimize``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt
from scipy.optimize import Bounds, minimize

from refcalib.config import OptimizerConfig, OptimizerMethod
from refcalib.errors import ConvergenceError
from refcalib.utils.logger import get_logger

LOGGER = get_logger(__name__)

Objective = Callable[[npt.NDArray[np.float64]], tuple[float, npt.NDArray[np.float64]]]


@dataclass(slots=True)
class OptimizerOutcome:
    """What the engine reports back once it stops."""

    x: npt.NDArray[np.float64]
    converged: bool
    value: float
    iterations: int
    evaluations: int
    message: str


class BoundedOptimizer(Protocol):
    """Protocol for a box-constrained gradient-based minimizer."""

    def minimize(
        self,
        objective: Objective,
        x0: npt.NDArray[np.float64],
        lower: npt.NDArray[np.float64],
        upper: npt.NDArray[np.float64],
    ) -> OptimizerOutcome:
        """Minimize ``objective`` (returning value and gradient) over ``[lower, upper]``.

        Raises:
            ConvergenceError: when the engine fails numerically or runs out
                of its time budget
        """
        ...


class _BudgetExhausted(Exception):
    """Raised from inside the objective when the wall-clock budget is spent."""


class ScipyBoundedOptimizer:
    """``scipy.optimize.minimize`` restricted to its bounded gradient methods."""

    def __init__(self, config: OptimizerConfig | None = None) -> None:
        self.config = config or OptimizerConfig()
        self.method = OptimizerMethod(self.config.method)

    def _options(self) -> dict[str, Any]:
        cfg = self.config
        if self.method is OptimizerMethod.LBFGSB:
            return {"maxiter": cfg.max_iter, "ftol": cfg.ftol, "gtol": cfg.gtol}
        if self.method is OptimizerMethod.TNC:
            return {"maxfun": cfg.max_iter, "ftol": cfg.ftol, "gtol": cfg.gtol}
        if self.method is OptimizerMethod.SLSQP:
            return {"maxiter": cfg.max_iter, "ftol": cfg.ftol}
        return {"maxiter": cfg.max_iter, "gtol": cfg.gtol, "xtol": cfg.ftol}

    def minimize(
        self,
        objective: Objective,
        x0: npt.NDArray[np.float64],
        lower: npt.NDArray[np.float64],
        upper: npt.NDArray[np.float64],
    ) -> OptimizerOutcome:
        budget = self.config.max_time_s
        started = time.monotonic()
        calls = 0

        def _timed(x: npt.NDArray[np.float64]) -> tuple[float, npt.NDArray[np.float64]]:
            nonlocal calls
            if time.monotonic() - started >= budget:
                raise _BudgetExhausted
            calls += 1
            return objective(x)

        LOGGER.debug(
            "Starting {} with {} parameters, budget {} iterations / {:.1f}s",
            self.method.value,
            x0.size,
            self.config.max_iter,
            budget,
        )
        try:
            res = minimize(
                _timed,
                np.asarray(x0, dtype=np.float64),
                method=self.method.value,
                jac=True,
                bounds=Bounds(lower, upper),
                options=self._options(),
            )
        except _BudgetExhausted as exc:
            raise ConvergenceError(
                f"Time budget of {budget:.3f}s exhausted after {calls} evaluations"
            ) from exc
        except (np.linalg.LinAlgError, FloatingPointError, ValueError) as exc:
            raise ConvergenceError(f"{self.method.value} failed numerically: {exc}") from exc

        iterations = int(getattr(res, "nit", 0) or 0)
        outcome = OptimizerOutcome(
            x=np.clip(np.asarray(res.x, dtype=np.float64), lower, upper),
            converged=bool(res.success) and bool(np.isfinite(res.fun)),
            value=float(res.fun),
            iterations=iterations,
            evaluations=calls,
            message=str(res.message),
        )
        LOGGER.debug(
            "{} stopped after {} iterations ({} evaluations): {}",
            self.method.value,
            outcome.iterations,
            outcome.evaluations,
            outcome.message,
        )
        return outcome


__all__ = ["BoundedOptimizer", "Objective", "OptimizerOutcome", "ScipyBoundedOptimizer"]
