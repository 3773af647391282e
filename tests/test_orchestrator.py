"""
Research orchestrator tests.

Search, fetch and the language model are fakes; records go to a real
SQLite database under tmp_path.
"""

import asyncio

import pytest

from conftest import FakeFetcher, FakeLLM, FakeSearch, make_results
from marginalia.core.research.events import ResearchEventBus
from marginalia.core.research.models import Article, ResearchStatus
from marginalia.core.research.modes import ModeLimits, ResearchMode
from marginalia.core.research.orchestrator import ResearchOrchestrator
from marginalia.core.research.planner import QueryPlanner
from marginalia.core.research.synthesizer import SummarySynthesizer
from marginalia.storage import InMemoryArticleStore, SQLiteResearchStore
from marginalia.utils.exceptions import FetchBlockedError, FetchTimeoutError, SearchError
from marginalia.utils.timefmt import now_civil

SYNTHESIS_REPLY = (
    '{"summaryMd": "- Turbines are being trialled\\n- Output is predictable",'
    ' "sources": [], "questions": ["What does it cost?"]}'
)
PLAN_REPLY = '{"searchQuery": "Cook Strait tidal turbine trial"}'

# Status order a single run may move through
ORDER = {
    ResearchStatus.QUEUED: 0,
    ResearchStatus.RUNNING: 1,
    ResearchStatus.READY: 2,
    ResearchStatus.FAILED: 2,
}


class ReadyWriteFailsStore(SQLiteResearchStore):
    """Research store whose ready write raises."""

    async def upsert(self, article_id, **fields):
        if fields.get("status") is ResearchStatus.READY:
            raise RuntimeError("database is locked")
        return await super().upsert(article_id, **fields)


def build(
    tmp_path,
    article,
    search=None,
    fetcher=None,
    llm=None,
    mode_limits=None,
    articles=None,
    research_store=None,
):
    llm = llm or FakeLLM(PLAN_REPLY, SYNTHESIS_REPLY)
    orchestrator = ResearchOrchestrator(
        research_store=research_store or SQLiteResearchStore(tmp_path / "research.db"),
        article_store=InMemoryArticleStore(articles if articles is not None else [article]),
        search=search or FakeSearch(make_results(6)),
        fetcher=fetcher or FakeFetcher(),
        planner=QueryPlanner(llm),
        synthesizer=SummarySynthesizer(llm),
        events=ResearchEventBus(max_queue_size=50),
        mode_limits=mode_limits,
    )
    return orchestrator


class TestResearchRun:
    """A complete run."""

    @pytest.mark.asyncio
    async def test_start_returns_queued_then_ready(self, tmp_path, article):
        search = FakeSearch(make_results(6))
        fetcher = FakeFetcher({"https://example1.com/article": "<p>Turbine output data</p>"})
        llm = FakeLLM(PLAN_REPLY, SYNTHESIS_REPLY)
        orchestrator = build(tmp_path, article, search=search, fetcher=fetcher, llm=llm)

        record = await orchestrator.start(article.id)
        assert record.status is ResearchStatus.QUEUED

        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.READY
        assert record.error_message is None
        assert record.questions == ["What does it cost?"]
        assert len(record.sources) == 4
        assert record.summary_md.splitlines() == [
            "- Turbines are being trialled (https://example1.com/article)",
            "- Output is predictable (https://example2.com/article)",
        ]
        assert record.expires_at > now_civil()
        assert search.queries == [("Cook Strait tidal turbine trial", 6)]
        assert len(fetcher.fetched) == 4
        assert "Turbine output data" in llm.prompts[-1]
        assert not orchestrator.is_running(article.id)

    @pytest.mark.asyncio
    async def test_mode_limits_applied(self, tmp_path, article):
        search = FakeSearch(make_results(8))
        fetcher = FakeFetcher()
        orchestrator = build(tmp_path, article, search=search, fetcher=fetcher)

        await orchestrator.start(article.id, "quick")
        await orchestrator.wait_idle()

        assert search.queries[0][1] == 5
        assert len(fetcher.fetched) == 3

    @pytest.mark.asyncio
    async def test_unknown_mode_is_standard(self, tmp_path, article):
        search = FakeSearch(make_results(8))
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id, "turbo")
        await orchestrator.wait_idle()

        assert search.queries[0][1] == 6

    @pytest.mark.asyncio
    async def test_empty_search_short_circuits(self, tmp_path, article):
        llm = FakeLLM(PLAN_REPLY)
        fetcher = FakeFetcher()
        orchestrator = build(tmp_path, article, search=FakeSearch([]), fetcher=fetcher, llm=llm)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.READY
        assert record.summary_md == "- No result found!"
        assert record.sources == []
        assert record.questions == []
        assert record.expires_at is not None
        assert fetcher.fetched == []
        assert len(llm.prompts) == 1

    @pytest.mark.asyncio
    async def test_fetch_failures_are_not_fatal(self, tmp_path, article):
        fetcher = FakeFetcher({
            "https://example1.com/article": FetchBlockedError("https://example1.com/article", "nope"),
            "https://example2.com/article": FetchTimeoutError("https://example2.com/article", 8),
            "https://example3.com/article": RuntimeError("unexpected"),
        })
        orchestrator = build(tmp_path, article, fetcher=fetcher)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()

        assert (await orchestrator.get(article.id)).status is ResearchStatus.READY

    @pytest.mark.asyncio
    async def test_search_error_fails_run(self, tmp_path, article):
        search = FakeSearch(error=SearchError("Search failed (500): oops"))
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "Search failed (500): oops"
        assert not orchestrator.is_running(article.id)

    @pytest.mark.asyncio
    async def test_missing_article_fails_run(self, tmp_path, article):
        orchestrator = build(tmp_path, article, articles=[])

        await orchestrator.start(404)
        await orchestrator.wait_idle()
        record = await orchestrator.get(404)

        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "Article not found"

    @pytest.mark.asyncio
    async def test_bad_synthesis_fails_run(self, tmp_path, article):
        llm = FakeLLM(PLAN_REPLY, "no json at all")
        orchestrator = build(tmp_path, article, llm=llm)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "LLM output missing JSON"

    @pytest.mark.asyncio
    async def test_null_synthesis_fields_still_ready(self, tmp_path, article):
        llm = FakeLLM(PLAN_REPLY, '{"summaryMd": "- A point", "sources": null, "questions": null}')
        orchestrator = build(tmp_path, article, llm=llm)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.READY
        assert record.summary_md == "- A point (https://example1.com/article)"
        assert record.questions == []

    @pytest.mark.asyncio
    async def test_empty_error_message_defaults(self, tmp_path, article):
        search = FakeSearch(error=RuntimeError())
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()

        assert (await orchestrator.get(article.id)).error_message == "Research failed"

    @pytest.mark.asyncio
    async def test_none_article_id(self, tmp_path, article):
        orchestrator = build(tmp_path, article)
        assert await orchestrator.start(None) is None

    @pytest.mark.asyncio
    async def test_rerun_after_failure_clears_error(self, tmp_path, article):
        search = FakeSearch(error=SearchError("boom"))
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        assert (await orchestrator.get(article.id)).status is ResearchStatus.FAILED

        search.error = None
        search.results = make_results(2)
        record = await orchestrator.start(article.id)
        assert record.status is ResearchStatus.QUEUED
        assert record.error_message is None

        await orchestrator.wait_idle()
        assert (await orchestrator.get(article.id)).status is ResearchStatus.READY


class TestConcurrency:
    """Dedup, ordering and timeouts."""

    @pytest.mark.asyncio
    async def test_concurrent_starts_run_once(self, tmp_path, article):
        search = FakeSearch(make_results(3), delay=0.05)
        orchestrator = build(tmp_path, article, search=search)

        records = await asyncio.gather(*(orchestrator.start(article.id) for _ in range(5)))
        await orchestrator.wait_idle()

        assert len(search.queries) == 1
        assert all(r is not None for r in records)
        assert all(r.status in (ResearchStatus.QUEUED, ResearchStatus.RUNNING) for r in records)
        assert (await orchestrator.get(article.id)).status is ResearchStatus.READY

    @pytest.mark.asyncio
    async def test_start_while_running_keeps_status(self, tmp_path, article):
        search = FakeSearch(make_results(3), delay=0.3)
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id)
        await asyncio.sleep(0.1)
        assert orchestrator.is_running(article.id)

        record = await orchestrator.start(article.id)
        assert record.status is ResearchStatus.RUNNING

        await orchestrator.wait_idle()
        assert len(search.queries) == 1

    @pytest.mark.asyncio
    async def test_statuses_move_forward(self, tmp_path, article):
        search = FakeSearch(make_results(3), delay=0.02)
        orchestrator = build(tmp_path, article, search=search)
        seen = []
        orchestrator.events.add_listener(lambda e: seen.append(e.status))

        await orchestrator.start(article.id)
        await asyncio.sleep(0.005)
        await orchestrator.start(article.id)
        await orchestrator.wait_idle()

        ranks = [ORDER[s] for s in seen]
        assert ranks == sorted(ranks)
        assert seen[0] is ResearchStatus.QUEUED
        assert seen[-1] is ResearchStatus.READY
        assert ResearchStatus.RUNNING in seen

    @pytest.mark.asyncio
    async def test_timeout_wins_over_late_success(self, tmp_path, article):
        limits = {ResearchMode.STANDARD: ModeLimits(6, 4, timeout=0.05, ttl_hours=24)}
        search = FakeSearch(make_results(3), delay=0.5)
        orchestrator = build(tmp_path, article, search=search, mode_limits=limits)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        await asyncio.sleep(0.05)
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "Research timed out"
        assert not orchestrator.is_running(article.id)

    @pytest.mark.asyncio
    async def test_marker_released_after_failure(self, tmp_path, article):
        orchestrator = build(tmp_path, article, search=FakeSearch(error=SearchError("down")))

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()

        assert len(orchestrator.tracker) == 0

    @pytest.mark.asyncio
    async def test_failed_ready_write_records_failure(self, tmp_path, article):
        store = ReadyWriteFailsStore(tmp_path / "research.db")
        orchestrator = build(tmp_path, article, research_store=store)

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        record = await orchestrator.get(article.id)

        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "database is locked"
        assert not orchestrator.is_running(article.id)

    @pytest.mark.asyncio
    async def test_shutdown_marks_runs_failed(self, tmp_path, article):
        search = FakeSearch(make_results(3), delay=5)
        orchestrator = build(tmp_path, article, search=search)

        await orchestrator.start(article.id)
        await asyncio.sleep(0.02)
        await orchestrator.shutdown()

        record = await orchestrator.get(article.id)
        assert record.status is ResearchStatus.FAILED
        assert record.error_message == "Research cancelled"
        assert not orchestrator.is_running(article.id)

    @pytest.mark.asyncio
    async def test_distinct_articles_run_independently(self, tmp_path, article):
        other = Article(id=2, title="Second", content_html="<p>Body</p>")
        search = FakeSearch(make_results(2), delay=0.02)
        orchestrator = build(tmp_path, article, search=search, articles=[article, other])

        await asyncio.gather(orchestrator.start(1), orchestrator.start(2))
        await orchestrator.wait_idle()

        assert len(search.queries) == 2
        assert (await orchestrator.get(2)).status is ResearchStatus.READY


class TestEvents:
    """Every write is published."""

    @pytest.mark.asyncio
    async def test_events_carry_visibility(self, tmp_path, article):
        orchestrator = build(tmp_path, article)
        subscription = orchestrator.events.subscribe()

        await orchestrator.start(article.id)
        await orchestrator.wait_idle()
        subscription.close()

        events = [e async for e in subscription]
        assert [e.status for e in events] == [
            ResearchStatus.QUEUED,
            ResearchStatus.RUNNING,
            ResearchStatus.READY,
        ]
        assert all(e.is_published and e.author_user_id == 7 for e in events)
        assert all(e.article_id == article.id for e in events)

    @pytest.mark.asyncio
    async def test_missing_article_event_is_private(self, tmp_path, article):
        orchestrator = build(tmp_path, article, articles=[])
        seen = []
        orchestrator.events.add_listener(seen.append)

        await orchestrator.start(77)
        await orchestrator.wait_idle()

        assert seen
        assert all(not e.is_published and e.author_user_id is None for e in seen)
