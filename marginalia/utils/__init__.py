"""Utility modules."""
from .logging import get_logger, setup_logging, RunLogger
from .timefmt import format_civil, now_civil, civil_after

__all__ = [
    "get_logger",
    "setup_logging",
    "RunLogger",
    "format_civil",
    "now_civil",
    "civil_after",
]
