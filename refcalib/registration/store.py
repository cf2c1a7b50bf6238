"""Correspondence database of matched 3D points."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from refcalib.errors import InputError
from refcalib.utils.error_tracker import ErrorTracker
from refcalib.utils.logger import get_logger

LOGGER = get_logger(__name__)


def as_point(value: npt.ArrayLike, name: str = "point") -> npt.NDArray[np.float64]:
    """Coerce ``value`` to a finite float64 3-vector.

    Raises:
        InputError: if the value is not a 3-vector of finite numbers
    """
    try:
        point = np.array(value, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{name} is not numeric: {exc}") from exc
    if point.shape != (3,):
        raise InputError(f"{name} must have 3 components, got {point.shape[0]}")
    if not np.all(np.isfinite(point)):
        raise InputError(f"{name} has non-finite components: {point.tolist()}")
    return point


@dataclass(frozen=True)
class CorrespondencePair:
    """A source point and the target point observed at the same location."""

    source: npt.NDArray[np.float64]
    target: npt.NDArray[np.float64]

    def copy(self) -> CorrespondencePair:
        return CorrespondencePair(source=self.source.copy(), target=self.target.copy())


class PointPairStore:
    """Ordered, append-only collection of correspondence pairs.

    Mutators hold the store lock, which the solver also holds for the whole
    of a solve: ``add``/``clear`` issued from another thread during a solve
    block until the solve returns.
    """

    def __init__(self, tracker: ErrorTracker | None = None) -> None:
        self._pairs: list[CorrespondencePair] = []
        self._lock = threading.RLock()
        self.tracker = tracker or ErrorTracker(context="refcalib.store")

    def add(self, p_source: npt.ArrayLike, p_target: npt.ArrayLike) -> bool:
        """Append a pair; returns False (store unchanged) on non-finite input."""
        try:
            source = as_point(p_source, "source")
            target = as_point(p_target, "target")
        except InputError as exc:
            self.tracker.record_exception("add", exc)
            return False
        with self._lock:
            self._pairs.append(CorrespondencePair(source=source, target=target))
            LOGGER.debug("Added pair #{}: {} -> {}", len(self._pairs), source, target)
        return True

    def add_many(self, sources: npt.ArrayLike, targets: npt.ArrayLike) -> int:
        """Add row-aligned ``(N, 3)`` arrays; returns the number of accepted pairs."""
        src = np.asarray(sources, dtype=np.float64)
        dst = np.asarray(targets, dtype=np.float64)
        if src.ndim != 2 or src.shape != dst.shape:
            self.tracker.record(
                "add_many", f"Point arrays must share an (N, 3) shape: {src.shape} vs {dst.shape}"
            )
            return 0
        with self._lock:
            accepted = sum(self.add(p, q) for p, q in zip(src, dst))
        LOGGER.info("Accepted {}/{} pairs", accepted, src.shape[0])
        return accepted

    def size(self) -> int:
        with self._lock:
            return len(self._pairs)

    def __len__(self) -> int:
        return self.size()

    def get_all(self) -> list[CorrespondencePair]:
        """Return copies of every pair in insertion order."""
        with self._lock:
            return [pair.copy() for pair in self._pairs]

    def get_points(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Return copies of the source and target points as two ``(N, 3)`` arrays."""
        with self._lock:
            if not self._pairs:
                empty = np.empty((0, 3), dtype=np.float64)
                return empty, empty.copy()
            sources = np.stack([pair.source for pair in self._pairs])
            targets = np.stack([pair.target for pair in self._pairs])
        return sources, targets

    def clear(self) -> None:
        with self._lock:
            count = len(self._pairs)
            self._pairs.clear()
        if count:
            LOGGER.info("Cleared {} pairs", count)

    @contextmanager
    def locked(self) -> Iterator[PointPairStore]:
        """Hold exclusive access to the store for the duration of the block."""
        with self._lock:
            yield self

    def __repr__(self) -> str:
        return f"PointPairStore(size={self.size()})"


__all__ = ["CorrespondencePair", "PointPairStore", "as_point"]
