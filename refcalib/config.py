"""Centralized configuration for the refcalib registration toolkit.

All constants, settings, and configuration dataclasses are defined here.
Modules should import from this single source of truth.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final, Optional, Tuple

def _env_path(key: str, default: Optional[Path]) -> Optional[Path]:
    """Resolve path from environment variable with fallback."""
    value = os.getenv(key)
    return Path(value).expanduser() if value else default


def _env_str(key: str, default: str) -> str:
    """Resolve string from environment variable with fallback."""
    value = os.getenv(key)
    return value if value is not None else default


def _env_int(key: str, default: int) -> int:
    """Resolve integer from environment variable with fallback."""
    value = os.getenv(key)
    return int(value) if value is not None else default


def _env_float(key: str, default: float) -> float:
    """Resolve float from environment variable with fallback."""
    value = os.getenv(key)
    return float(value) if value is not None else default


# ============================================================================
# BOUNDS CONSTANTS
# ============================================================================

BOUNDS_TRANSLATION_LIMIT: Final[float] = 1.0
BOUNDS_ROTATION_LIMIT: Final[float] = math.pi
BOUNDS_SCALE_MIN: Final[float] = 0.1
BOUNDS_SCALE_MAX: Final[float] = 10.0

# ============================================================================
# SOLVER CONSTANTS
# ============================================================================

SOLVER_MIN_PAIRS: Final[int] = 3
# Ratio of the second to the first singular value of the centred point cloud
# below which the configuration is treated as collinear.
SOLVER_COLLINEARITY_TOL: Final[float] = 1e-9
# Extra optimizer runs allowed after the seeded one (closed-form start and
# restarts across a full-turn rotation bound).
SOLVER_MAX_RESTARTS: Final[int] = 4

# ============================================================================
# OPTIMIZER CONSTANTS
# ============================================================================

OPTIMIZER_MAX_ITER: Final[int] = 2000
OPTIMIZER_MAX_TIME_S: Final[float] = 30.0
OPTIMIZER_FTOL: Final[float] = 1e-14
OPTIMIZER_GTOL: Final[float] = 1e-10

# ============================================================================
# LOGGING CONSTANTS
# ============================================================================

LOG_DEFAULT_LEVEL: Final[str] = "INFO"
LOG_FILE_PREFIX: Final[str] = "refcalib"

# ============================================================================
# ENUMS
# ============================================================================


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class OptimizerMethod(str, Enum):
    """Bounded methods of ``scipy.optimize.minimize`` usable as the NLP engine."""

    LBFGSB = "L-BFGS-B"
    TNC = "TNC"
    SLSQP = "SLSQP"
    TRUST_CONSTR = "trust-constr"


class ScaleMode(str, Enum):
    """Which scale parameters are free during a solve."""

    NONE = "none"
    SCALAR = "scalar"
    ANISOTROPIC = "anisotropic"

    @property
    def n_params(self) -> int:
        """Length of the parameter vector (translation, rpy, scale)."""
        return {ScaleMode.NONE: 6, ScaleMode.SCALAR: 7, ScaleMode.ANISOTROPIC: 9}[self]


# ============================================================================
# DATACLASSES - Configuration Sections
# ============================================================================


@dataclass(frozen=True)
class BoundsConfig:
    """Default box constraints applied to fresh ParameterBounds."""

    translation_min: Tuple[float, float, float] = (-BOUNDS_TRANSLATION_LIMIT,) * 3
    translation_max: Tuple[float, float, float] = (BOUNDS_TRANSLATION_LIMIT,) * 3
    rotation_min: Tuple[float, float, float] = (-BOUNDS_ROTATION_LIMIT,) * 3
    rotation_max: Tuple[float, float, float] = (BOUNDS_ROTATION_LIMIT,) * 3
    scale_min: float = BOUNDS_SCALE_MIN
    scale_max: float = BOUNDS_SCALE_MAX
    scale_axes_min: Tuple[float, float, float] = (BOUNDS_SCALE_MIN,) * 3
    scale_axes_max: Tuple[float, float, float] = (BOUNDS_SCALE_MAX,) * 3

    @property
    def transform_min(self) -> Tuple[float, ...]:
        return self.translation_min + self.rotation_min

    @property
    def transform_max(self) -> Tuple[float, ...]:
        return self.translation_max + self.rotation_max


@dataclass(frozen=True)
class OptimizerConfig:
    """Bounded NLP engine settings, fixed before a solve starts."""

    method: OptimizerMethod = OptimizerMethod.LBFGSB
    max_iter: int = OPTIMIZER_MAX_ITER
    max_time_s: float = OPTIMIZER_MAX_TIME_S
    ftol: float = OPTIMIZER_FTOL
    gtol: float = OPTIMIZER_GTOL


@dataclass(frozen=True)
class SolverConfig:
    """Data sufficiency checks performed before the optimizer is invoked."""

    min_pairs: int = SOLVER_MIN_PAIRS
    collinearity_tol: float = SOLVER_COLLINEARITY_TOL
    max_restarts: int = SOLVER_MAX_RESTARTS


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = LOG_DEFAULT_LEVEL
    log_dir: Optional[Path] = None
    file_prefix: str = LOG_FILE_PREFIX


# ============================================================================
# MAIN CONFIGURATION
# ============================================================================


@dataclass(frozen=True)
class Settings:
    """Main application configuration.

    Instances are immutable (frozen=True) to prevent accidental mutation.
    """

    bounds: BoundsConfig = field(default_factory=BoundsConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_settings() -> Settings:
    """Factory function to create Settings with environment variable overrides.

    Environment variables:
        REFCALIB_OPTIMIZER_METHOD: scipy method name (L-BFGS-B, TNC, SLSQP, trust-constr)
        REFCALIB_MAX_ITER: Optimizer iteration budget
        REFCALIB_MAX_TIME_S: Optimizer wall-clock budget in seconds
        REFCALIB_FTOL: Relative objective tolerance
        REFCALIB_GTOL: Projected gradient tolerance
        REFCALIB_MIN_PAIRS: Minimum number of correspondence pairs
        REFCALIB_MAX_RESTARTS: Extra optimizer runs after the seeded one
        REFCALIB_LOG_LEVEL: Logging level
        REFCALIB_LOG_DIR: Directory for the log file sink (disabled if unset)
    """
    optimizer = OptimizerConfig(
        method=OptimizerMethod(_env_str("REFCALIB_OPTIMIZER_METHOD", OptimizerMethod.LBFGSB.value)),
        max_iter=_env_int("REFCALIB_MAX_ITER", OPTIMIZER_MAX_ITER),
        max_time_s=_env_float("REFCALIB_MAX_TIME_S", OPTIMIZER_MAX_TIME_S),
        ftol=_env_float("REFCALIB_FTOL", OPTIMIZER_FTOL),
        gtol=_env_float("REFCALIB_GTOL", OPTIMIZER_GTOL),
    )

    solver = SolverConfig(
        min_pairs=max(SOLVER_MIN_PAIRS, _env_int("REFCALIB_MIN_PAIRS", SOLVER_MIN_PAIRS)),
        max_restarts=max(0, _env_int("REFCALIB_MAX_RESTARTS", SOLVER_MAX_RESTARTS)),
    )

    logging = LoggingConfig(
        level=LogLevel(_env_str("REFCALIB_LOG_LEVEL", LOG_DEFAULT_LEVEL).upper()).value,
        log_dir=_env_path("REFCALIB_LOG_DIR", None),
    )

    return Settings(
        bounds=BoundsConfig(),
        optimizer=optimizer,
        solver=solver,
        logging=logging,
    )


# ============================================================================
# MODULE EXPORTS
# ============================================================================

__all__ = [
    # Factory
    "get_settings",
    # Main config
    "Settings",
    # Config sections
    "BoundsConfig",
    "OptimizerConfig",
    "SolverConfig",
    "LoggingConfig",
    # Enums
    "LogLevel",
    "OptimizerMethod",
    "ScaleMode",
    # Constants (selected for external use)
    "BOUNDS_TRANSLATION_LIMIT",
    "BOUNDS_ROTATION_LIMIT",
    "BOUNDS_SCALE_MIN",
    "BOUNDS_SCALE_MAX",
    "SOLVER_MIN_PAIRS",
    "SOLVER_COLLINEARITY_TOL",
    "SOLVER_MAX_RESTARTS",
    "OPTIMIZER_MAX_ITER",
    "OPTIMIZER_MAX_TIME_S",
]
