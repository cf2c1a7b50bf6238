"""Utility package re-exporting shared helpers for refcalib."""

from refcalib.utils.error_tracker import ErrorTracker
from refcalib.utils.format import format_matrix, format_vector
from refcalib.utils.logger import configure, get_logger

__all__ = [
    "ErrorTracker",
    "configure",
    "format_matrix",
    "format_vector",
    "get_logger",
]
