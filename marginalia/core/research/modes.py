"""
Research Modes.

Named resource-limit profiles selecting search breadth, fetch count,
run timeout and result TTL.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ResearchMode(str, Enum):
    """Depth of a research run."""
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


@dataclass(frozen=True)
class ModeLimits:
    """
    Limits applied to one run.

    Attributes:
        search_results: Results requested from the search API
        fetch_pages: Sources fetched and handed to the synthesizer
        timeout: Wall-clock budget for the whole run, in seconds
        ttl_hours: How long a ready record stays fresh
    """
    search_results: int
    fetch_pages: int
    timeout: float
    ttl_hours: float


MODE_LIMITS: dict[ResearchMode, ModeLimits] = {
    ResearchMode.QUICK: ModeLimits(search_results=5, fetch_pages=3, timeout=20.0, ttl_hours=12),
    ResearchMode.STANDARD: ModeLimits(search_results=6, fetch_pages=4, timeout=30.0, ttl_hours=24),
    ResearchMode.DEEP: ModeLimits(search_results=8, fetch_pages=5, timeout=40.0, ttl_hours=24 * 7),
}


def resolve_mode(mode: Optional[Union[str, ResearchMode]]) -> ResearchMode:
    """Map user input to a mode; anything unknown means STANDARD."""
    if isinstance(mode, ResearchMode):
        return mode
    if isinstance(mode, str):
        try:
            return ResearchMode(mode.strip().lower())
        except ValueError:
            pass
    return ResearchMode.STANDARD


def get_mode_limits(mode: Optional[Union[str, ResearchMode]]) -> ModeLimits:
    return MODE_LIMITS[resolve_mode(mode)]


@dataclass(frozen=True)
class RunRequest:
    """One trigger of the research pipeline. Not persisted."""
    article_id: int
    mode: ResearchMode = ResearchMode.STANDARD
