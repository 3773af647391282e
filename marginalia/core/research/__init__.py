"""
Article Research Package.

Models and modes shared by the planner, synthesizer and orchestrator.
The orchestrator itself lives in :mod:`marginalia.core.research.orchestrator`.
"""

from marginalia.core.research.models import (
    Article,
    ResearchRecord,
    ResearchSource,
    ResearchStatus,
)
from marginalia.core.research.modes import (
    MODE_LIMITS,
    ModeLimits,
    ResearchMode,
    RunRequest,
    get_mode_limits,
    resolve_mode,
)

__all__ = [
    "Article",
    "ResearchRecord",
    "ResearchSource",
    "ResearchStatus",
    "MODE_LIMITS",
    "ModeLimits",
    "ResearchMode",
    "RunRequest",
    "get_mode_limits",
    "resolve_mode",
]
