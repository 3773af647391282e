"""
Shared fixtures and fakes for the research agent tests.
"""

import asyncio
from typing import Callable, Optional, Union

import pytest

from marginalia.config import clear_settings_cache
from marginalia.core.research.models import Article
from marginalia.services.llm.base import LLMService
from marginalia.services.llm.models import GenerationResult
from marginalia.services.search.base import SearchService
from marginalia.services.search.models import SearchResult


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings per test, pointed at a temporary database."""
    monkeypatch.setenv("MARGINALIA_RESEARCH_DATABASE", str(tmp_path / "blog.db"))
    monkeypatch.setenv("MARGINALIA_RESEARCH_TIMEZONE", "Pacific/Auckland")
    monkeypatch.delenv("MARGINALIA_CONFIG_PATH", raising=False)
    clear_settings_cache()

    from marginalia import service
    service.reset_services()
    yield
    service.reset_services()
    clear_settings_cache()


class FakeLLM(LLMService):
    """Replays canned replies; a reply may be an exception to raise."""

    def __init__(self, *replies: Union[str, Exception], delay: float = 0.0):
        self.replies = list(replies)
        self.delay = delay
        self.prompts: list[str] = []

    async def generate(self, prompt, system=None, config=None) -> GenerationResult:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return GenerationResult(content=reply, model="fake")


class FakeSearch(SearchService):
    """Returns fixed results and records each query."""

    def __init__(self, results: Optional[list] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.results = results or []
        self.error = error
        self.delay = delay
        self.queries: list[tuple[str, int]] = []

    async def search(self, query: str, limit: int = 6) -> list[SearchResult]:
        self.queries.append((query, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.results[:limit])


class FakeFetcher:
    """Maps URLs to HTML bodies or exceptions."""

    def __init__(self, pages: Optional[dict] = None, delay: float = 0.0):
        self.pages = pages or {}
        self.delay = delay
        self.fetched: list[str] = []

    async def fetch(self, url: str, timeout=None, max_bytes=None) -> str:
        self.fetched.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        page = self.pages.get(url, "")
        if isinstance(page, Exception):
            raise page
        return page

    async def close(self):
        return None


def make_results(count: int) -> list[SearchResult]:
    return [
        SearchResult(
            title=f"Source {i}",
            url=f"https://example{i}.com/article",
            snippet=f"Snippet {i}",
            publisher=f"Publisher {i}",
        )
        for i in range(1, count + 1)
    ]


def public_resolver(*ips: str) -> Callable:
    """Resolver stub that answers every hostname with ``ips``."""
    addresses = list(ips) or ["93.184.216.34"]

    async def resolve(hostname: str) -> list[str]:
        return addresses

    return resolve


@pytest.fixture
def article():
    return Article(
        id=1,
        title="Tidal energy in the Cook Strait",
        content_html="<p>Engineers are testing <b>tidal turbines</b> near Wellington.</p>",
        is_published=True,
        author_user_id=7,
    )
