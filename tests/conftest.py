"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import numpy as np
import pytest

if TYPE_CHECKING:
    from refcalib.registration import RegistrationSession, RegistrationSolver

TRUE_TRANSLATION = np.array([0.3, -0.2, 0.5])
TRUE_RPY = np.array([0.2, -0.3, 0.4])


def map_points(
    points: np.ndarray, transform: np.ndarray, scale: float | np.ndarray | None = None
) -> np.ndarray:
    """Apply ``S * H`` to (N, 3) points."""
    s = np.ones(3) if scale is None else np.broadcast_to(np.asarray(scale, dtype=float), (3,))
    return (points @ transform[:3, :3].T + transform[:3, 3]) * s


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(7)


@pytest.fixture
def true_transform() -> np.ndarray:
    """Ground-truth transform well inside the default bounds."""
    from refcalib.core.geometry import make_transform

    return make_transform(TRUE_TRANSLATION, TRUE_RPY)


@pytest.fixture
def session() -> RegistrationSession:
    """Fresh registration session with default bounds."""
    from refcalib.registration import RegistrationSession

    return RegistrationSession(name="test")


@pytest.fixture
def solver() -> RegistrationSolver:
    """Solver with the default scipy optimizer."""
    from refcalib.registration import RegistrationSolver

    return RegistrationSolver()


@pytest.fixture
def fill_session(
    rng: np.random.Generator,
) -> Callable[..., np.ndarray]:
    """Populate a session with random sources mapped through a known transform.

    Returns the source points that were added.
    """

    def _fill(
        session: RegistrationSession,
        transform: np.ndarray,
        scale: float | np.ndarray | None = None,
        count: int = 8,
        noise: float = 0.0,
    ) -> np.ndarray:
        sources = rng.uniform(-1.0, 1.0, size=(count, 3))
        targets = map_points(sources, transform, scale)
        if noise > 0.0:
            targets = targets + rng.normal(0.0, noise, size=targets.shape)
        assert session.store.add_many(sources, targets) == count
        return sources

    return _fill
