"""Reference-frame calibration from matched 3D point pairs."""

from __future__ import annotations

from refcalib.config import ScaleMode, Settings, get_settings
from refcalib.errors import ConvergenceError, InputError, InsufficientDataError, RegistrationError
from refcalib.registration import (
    ErrorMetric,
    ParameterBounds,
    PointPairStore,
    RegistrationResult,
    RegistrationSession,
    RegistrationSolver,
)

__version__ = "0.1.0"

__all__ = [
    "ConvergenceError",
    "ErrorMetric",
    "InputError",
    "InsufficientDataError",
    "ParameterBounds",
    "PointPairStore",
    "RegistrationError",
    "RegistrationResult",
    "RegistrationSession",
    "RegistrationSolver",
    "ScaleMode",
    "Settings",
    "get_settings",
]
