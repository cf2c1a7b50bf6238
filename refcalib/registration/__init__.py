"""Reference calibration between two frames from matched 3D points."""

from __future__ import annotations

from refcalib.registration.bounds import ParameterBounds
from refcalib.registration.metric import ErrorMetric
from refcalib.registration.optimizer import BoundedOptimizer, OptimizerOutcome, ScipyBoundedOptimizer
from refcalib.registration.session import RegistrationSession
from refcalib.registration.solver import RegistrationResult, RegistrationSolver
from refcalib.registration.store import CorrespondencePair, PointPairStore

__all__ = [
    "BoundedOptimizer",
    "CorrespondencePair",
    "ErrorMetric",
    "OptimizerOutcome",
    "ParameterBounds",
    "PointPairStore",
    "RegistrationResult",
    "RegistrationSession",
    "RegistrationSolver",
    "ScipyBoundedOptimizer",
]
