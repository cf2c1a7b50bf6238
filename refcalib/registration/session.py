"""Registration session: the store and bounds one solve works on."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from refcalib.config import Settings, get_settings
from refcalib.registration.bounds import ParameterBounds
from refcalib.registration.store import PointPairStore
from refcalib.utils.error_tracker import ErrorTracker


class RegistrationSession:
    """Owns one correspondence database and one set of bounds.

    A session is passed explicitly to each solve call. Separate sessions
    share no mutable state and can be solved concurrently on separate
    threads; within a session, ``add``/``clear``/``set_*`` calls made while
    a solve is running wait for it to finish.
    """

    def __init__(self, name: str = "session", settings: Settings | None = None) -> None:
        cfg = settings or get_settings()
        self.name = name
        self.tracker = ErrorTracker(context=f"refcalib.{name}")
        self.store = PointPairStore(tracker=self.tracker)
        self.bounds = ParameterBounds(config=cfg.bounds, tracker=self.tracker)

    @contextmanager
    def locked(self) -> Iterator[RegistrationSession]:
        """Hold exclusive access to both the store and the bounds."""
        with self.store.locked(), self.bounds.locked():
            yield self

    def summary(self) -> dict[str, list[str]]:
        """Rejected inputs and failed solves recorded so far, keyed by operation."""
        return self.tracker.summary()

    def __repr__(self) -> str:
        return f"RegistrationSession(name={self.name!r}, pairs={self.store.size()})"


__all__ = ["RegistrationSession"]
