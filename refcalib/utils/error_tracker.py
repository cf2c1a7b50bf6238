# refcalib/utils/error_tracker.py
"""Collects rejected inputs and failed solves for later inspection."""

from __future__ import annotations

from dataclasses import dataclass, field

from refcalib.utils.logger import get_logger


@dataclass(slots=True)
class ErrorTracker:
    """Collect error messages keyed by the operation that produced them."""

    context: str = "ErrorTracker"
    errors: dict[str, list[str]] = field(default_factory=dict)

    def record(self, key: str, message: str) -> None:
        logger = get_logger(self.context)
        logger.error(f"{key}: {message}")
        self.errors.setdefault(key, []).append(message)

    def record_exception(self, key: str, exc: BaseException) -> None:
        self.record(key, f"{type(exc).__name__}: {exc}")

    def count(self, key: str | None = None) -> int:
        if key is not None:
            return len(self.errors.get(key, []))
        return sum(len(messages) for messages in self.errors.values())

    def summary(self) -> dict[str, list[str]]:
        logger = get_logger(self.context)
        if not self.errors:
            logger.info("No errors recorded")
            return {}
        for key, messages in self.errors.items():
            logger.warning(f"Encountered {len(messages)} issues for {key}")
        return {key: list(messages) for key, messages in self.errors.items()}


__all__ = ["ErrorTracker"]
