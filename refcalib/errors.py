"""Error taxonomy for reference calibration.

Every error is recoverable from the caller's point of view: none of them
leaves a store or a bounds object in a modified state.
"""

from __future__ import annotations


class RegistrationError(Exception):
    """Base class for all registration failures."""


class InputError(RegistrationError, ValueError):
    """Malformed caller input: non-finite points, inverted or non-positive bounds."""


class InsufficientDataError(RegistrationError):
    """Too few usable correspondence pairs to determine a unique transform."""


class ConvergenceError(RegistrationError):
    """The optimizer stopped without meeting its convergence criteria."""


__all__ = [
    "RegistrationError",
    "InputError",
    "InsufficientDataError",
    "ConvergenceError",
]
