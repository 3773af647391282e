"""
Research Orchestrator.

Runs the article research pipeline in the background:

    none -> queued -> running -> ready | failed

``start`` returns immediately with the queued record; a tracked asyncio task
plans a query, searches, fetches sources, synthesizes a cited summary and
persists the outcome. At most one run per article is in flight.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from marginalia.core.research import metrics
from marginalia.core.research.events import ResearchEventBus, ResearchUpdatedEvent
from marginalia.core.research.models import (
    ResearchRecord,
    ResearchSource,
    ResearchStatus,
    normalize_sources,
)
from marginalia.core.research.modes import (
    MODE_LIMITS,
    ModeLimits,
    ResearchMode,
    RunRequest,
    resolve_mode,
)
from marginalia.core.research.planner import QueryPlanner
from marginalia.core.research.prompts import NO_RESULT_SUMMARY
from marginalia.core.research.run_tracker import RunTracker
from marginalia.core.research.synthesizer import SummarySynthesizer
from marginalia.processing import extract_text
from marginalia.services.fetch import SafeFetcher
from marginalia.services.search import SearchService
from marginalia.storage.base import ArticleStore, ResearchStore
from marginalia.utils.exceptions import (
    ArticleNotFoundError,
    FetchError,
    ResearchTimeoutError,
)
from marginalia.utils.logging import RunLogger, get_logger
from marginalia.utils.timefmt import civil_after

logger = get_logger(__name__)


@dataclass
class ResearchOutcome:
    """What a successful pipeline hands back for persistence."""
    summary_md: str
    sources: list[ResearchSource] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)


class _RunLatch:
    """Set once a run's terminal record is persisted; later terminal writes are skipped."""

    def __init__(self):
        self.settled = False


class ResearchOrchestrator:
    """
    Coordinates research runs for articles.

    Collaborators are injected so tests can swap any of them; the run
    tracker and event bus are owned per instance rather than module globals.
    """

    def __init__(
        self,
        research_store: ResearchStore,
        article_store: ArticleStore,
        search: SearchService,
        fetcher: SafeFetcher,
        planner: QueryPlanner,
        synthesizer: SummarySynthesizer,
        events: Optional[ResearchEventBus] = None,
        tracker: Optional[RunTracker] = None,
        mode_limits: Optional[dict[ResearchMode, ModeLimits]] = None,
        tz_name: Optional[str] = None,
    ):
        self.research_store = research_store
        self.article_store = article_store
        self.search = search
        self.fetcher = fetcher
        self.planner = planner
        self.synthesizer = synthesizer
        self.events = events or ResearchEventBus()
        self.tracker = tracker or RunTracker()
        self.mode_limits = {**MODE_LIMITS, **(mode_limits or {})}
        self.tz_name = tz_name

        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def get(self, article_id: int) -> Optional[ResearchRecord]:
        """Current research record for an article, if any."""
        return await self.research_store.get(article_id)

    async def start(
        self,
        article_id: int,
        mode: Optional[Union[str, ResearchMode]] = None,
    ) -> Optional[ResearchRecord]:
        """
        Trigger research for an article without waiting for it.

        If a run for the article is already in flight no second run starts;
        the existing record is re-asserted unchanged and returned.

        Returns:
            The record as persisted when the call returns (normally ``queued``)
        """
        if article_id is None:
            return None

        request = RunRequest(article_id=article_id, mode=resolve_mode(mode))

        if not self.tracker.try_acquire(article_id):
            metrics.RESEARCH_COALESCED.inc()
            logger.info(f"Research already running for article {article_id}, not starting another")
            return await self._write(article_id)

        try:
            record = await self._write(
                article_id, status=ResearchStatus.QUEUED, error_message=None
            )
        except BaseException:
            self.tracker.release(article_id)
            raise

        task = asyncio.create_task(self._run(request), name=f"research-{article_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Queued research for article {article_id} (mode={request.mode.value})")
        return record

    def is_running(self, article_id: int) -> bool:
        return self.tracker.is_running(article_id)

    async def wait_idle(self) -> None:
        """Wait until every background run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding runs; each one records itself as failed."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Research orchestrator stopped ({len(tasks)} runs cancelled)")

    def limits_for(self, mode: ResearchMode) -> ModeLimits:
        return self.mode_limits[mode]

    # ------------------------------------------------------------------
    # Background run
    # ------------------------------------------------------------------

    async def _run(self, request: RunRequest) -> None:
        article_id = request.article_id
        mode = request.mode.value
        limits = self.limits_for(request.mode)
        latch = _RunLatch()
        log = RunLogger(logger, article_id=article_id, mode=mode)
        outcome_label = ResearchStatus.FAILED.value
        started = time.monotonic()
        metrics.RESEARCH_IN_PROGRESS.inc()

        try:
            await self._write(article_id, status=ResearchStatus.RUNNING, error_message=None)

            try:
                outcome = await asyncio.wait_for(
                    self._pipeline(request, limits, log), timeout=limits.timeout
                )
            except asyncio.TimeoutError as e:
                raise ResearchTimeoutError(limits.timeout) from e

            await self._write(
                article_id,
                status=ResearchStatus.READY,
                summary_md=outcome.summary_md,
                sources=outcome.sources,
                questions=outcome.questions,
                error_message=None,
                expires_at=civil_after(limits.ttl_hours, self.tz_name),
            )
            latch.settled = True
            outcome_label = ResearchStatus.READY.value
            log.info("Research ready")

        except asyncio.CancelledError:
            if not latch.settled:
                await self._fail(article_id, "Research cancelled")
            raise
        except Exception as e:
            # Includes a failed ready write
            message = getattr(e, "message", None) or str(e) or "Research failed"
            log.warning(f"Research failed: {message}")
            if not latch.settled:
                await self._fail(article_id, message)
        finally:
            self.tracker.release(article_id)
            metrics.RESEARCH_IN_PROGRESS.dec()
            metrics.RESEARCH_RUNS_TOTAL.labels(mode=mode, status=outcome_label).inc()
            metrics.RESEARCH_DURATION.labels(mode=mode).observe(time.monotonic() - started)

    async def _pipeline(
        self, request: RunRequest, limits: ModeLimits, log: RunLogger
    ) -> ResearchOutcome:
        """Plan, search, fetch and synthesize. Performs no writes."""
        article = await self.article_store.get_article(request.article_id)
        if article is None:
            raise ArticleNotFoundError(request.article_id)

        query = await self.planner.plan_query(article.title, article.content_html)
        results = await self.search.search(query, limits.search_results)

        if not results:
            log.info(f"No search results for '{query}'")
            return ResearchOutcome(summary_md=NO_RESULT_SUMMARY)

        sources = normalize_sources(results)[: limits.fetch_pages]
        source_texts = await asyncio.gather(*(self._fetch_text(s.url, log) for s in sources))

        result = await self.synthesizer.synthesize(article, sources, list(source_texts))
        return ResearchOutcome(
            summary_md=result.summary_md,
            sources=result.sources,
            questions=result.questions,
        )

    async def _fetch_text(self, url: str, log: RunLogger) -> str:
        """Fetched page text, or an empty string if the source is unusable."""
        try:
            html = await self.fetcher.fetch(url)
        except FetchError as e:
            metrics.FETCH_FAILURES.labels(reason=e.code).inc()
            log.info(f"Skipping source {url}: {e.message}")
            return ""
        except Exception as e:
            metrics.FETCH_FAILURES.labels(reason="UNEXPECTED").inc()
            log.warning(f"Unexpected error fetching {url}: {e}", exc_info=True)
            return ""
        return extract_text(html)

    # ------------------------------------------------------------------
    # Persistence + events
    # ------------------------------------------------------------------

    async def _fail(self, article_id: int, message: str) -> None:
        try:
            await self._write(article_id, status=ResearchStatus.FAILED, error_message=message)
        except Exception:
            logger.exception(f"Could not persist failed status for article {article_id}")

    async def _write(self, article_id: int, **fields) -> ResearchRecord:
        record = await self.research_store.upsert(article_id, **fields)
        await self._publish(record)
        return record

    async def _publish(self, record: ResearchRecord) -> None:
        is_published = False
        author_user_id = None
        try:
            article = await self.article_store.get_article(record.article_id)
        except Exception as e:
            logger.warning(f"Article lookup for event failed ({record.article_id}): {e}")
            article = None
        if article is not None:
            is_published = article.is_published
            author_user_id = article.author_user_id

        self.events.publish(
            ResearchUpdatedEvent(
                article_id=record.article_id,
                status=record.status,
                updated_at=record.updated_at,
                is_published=is_published,
                author_user_id=author_user_id,
            )
        )
