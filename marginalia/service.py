"""
Research service entry points.

Process-wide wiring of the research orchestrator and its collaborators,
plus the functions the blog's HTTP layer calls:

- ``start_article_research`` fires a run and returns the queued record
- ``get_article_research`` reads the current record
- ``request_article_research`` does the same as ``start`` behind the
  per-key rate limiter

Everything is created lazily on first use from :func:`get_settings`.
"""

from typing import Optional, Union

from marginalia.config import get_settings
from marginalia.core.research.events import ResearchEventBus
from marginalia.core.research.models import ResearchRecord
from marginalia.core.research.modes import ResearchMode
from marginalia.core.research.orchestrator import ResearchOrchestrator
from marginalia.core.research.planner import QueryPlanner
from marginalia.core.research.rate_limit import ResearchRateLimiter
from marginalia.core.research.synthesizer import SummarySynthesizer
from marginalia.services.fetch import SafeFetcher
from marginalia.services.llm import OpenAICompatibleService
from marginalia.services.search import SerperSearchService
from marginalia.storage import SQLiteArticleStore, SQLiteResearchStore
from marginalia.utils.exceptions import RateLimitExceededError
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)

_orchestrator: Optional[ResearchOrchestrator] = None
_rate_limiter: Optional[ResearchRateLimiter] = None
_event_bus: Optional[ResearchEventBus] = None


def get_event_bus() -> ResearchEventBus:
    """Get the global research event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = ResearchEventBus(get_settings().research.event_queue_size)
    return _event_bus


def get_rate_limiter() -> ResearchRateLimiter:
    """Get or lazily create the research trigger rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ResearchRateLimiter()
    return _rate_limiter


def get_orchestrator() -> ResearchOrchestrator:
    """Get or lazily create the research orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        llm = OpenAICompatibleService()
        _orchestrator = ResearchOrchestrator(
            research_store=SQLiteResearchStore(settings.research.database),
            article_store=SQLiteArticleStore(settings.research.database),
            search=SerperSearchService(),
            fetcher=SafeFetcher(),
            planner=QueryPlanner(llm),
            synthesizer=SummarySynthesizer(llm),
            events=get_event_bus(),
        )
        logger.info(
            f"Research orchestrator initialized (db={settings.research.database}, "
            f"model={settings.llm.model})"
        )
    return _orchestrator


def set_orchestrator(orchestrator: Optional[ResearchOrchestrator]) -> None:
    """Install a pre-built orchestrator (tests, embedding applications)."""
    global _orchestrator
    _orchestrator = orchestrator


async def start_article_research(
    article_id: int,
    mode: Optional[Union[str, ResearchMode]] = None,
) -> Optional[ResearchRecord]:
    """Trigger research for an article; returns immediately."""
    if mode is None:
        mode = get_settings().research.default_mode
    return await get_orchestrator().start(article_id, mode)


async def get_article_research(article_id: int) -> Optional[ResearchRecord]:
    """Current research record for an article, or None if never researched."""
    return await get_orchestrator().get(article_id)


async def request_article_research(
    article_id: int,
    mode: Optional[Union[str, ResearchMode]] = None,
    rate_key: Optional[str] = None,
) -> Optional[ResearchRecord]:
    """
    Rate-limited trigger, as used by the HTTP caller.

    Args:
        article_id: Article to research
        mode: quick / standard / deep (unknown values mean standard)
        rate_key: Limiter bucket, e.g. a user id. Defaults to the article.

    Raises:
        RateLimitExceededError: The key used up its starts for the window
    """
    key = rate_key or f"article:{article_id}"
    decision = get_rate_limiter().check(key)
    if not decision.allowed:
        raise RateLimitExceededError(key, decision.retry_after_ms)
    return await start_article_research(article_id, mode)


async def shutdown() -> None:
    """Cancel outstanding runs and close HTTP clients."""
    global _orchestrator
    orchestrator = _orchestrator
    if orchestrator is None:
        return
    _orchestrator = None

    await orchestrator.shutdown()
    await orchestrator.search.close()
    await orchestrator.fetcher.close()
    await orchestrator.planner.llm.close()


def reset_services() -> None:
    """Drop every lazily created component (useful for testing)."""
    global _orchestrator, _rate_limiter, _event_bus
    _orchestrator = None
    _rate_limiter = None
    _event_bus = None
