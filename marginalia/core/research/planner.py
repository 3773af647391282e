"""
Query Planner.

Turns an article into a compact web search query. Planning is best-effort:
any model or parsing failure falls back to a deterministic query built from
the title and the opening words of the body.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marginalia.config import get_settings
from marginalia.core.research.parsing import extract_json_object
from marginalia.core.research.prompts import QUERY_PLANNER_SYSTEM, QUERY_PLANNER_USER
from marginalia.processing import html_to_plain
from marginalia.services.llm.base import LLMService
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)


class QueryPlan(BaseModel):
    """Structured output expected from the planner prompt."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    search_query: str = Field(default="", alias="searchQuery")


class QueryPlanner:
    """Derives a search query for an article."""

    def __init__(
        self,
        llm: LLMService,
        fallback_words: Optional[int] = None,
        content_chars: Optional[int] = None,
    ):
        settings = get_settings()
        self.llm = llm
        self.fallback_words = fallback_words or settings.research.query_fallback_words
        self.content_chars = content_chars or settings.research.planner_content_chars

    def fallback_query(self, title: str, plain_body: str) -> str:
        """Title plus the first words of the body."""
        snippet = " ".join(plain_body.split()[: self.fallback_words])
        return f"{title} {snippet}".strip()

    async def plan_query(self, title: Optional[str], html_body: Optional[str]) -> str:
        """Return a search query for the article. Never raises."""
        title = (title or "").strip()
        plain = html_to_plain(html_body or "")
        fallback = self.fallback_query(title, plain)

        prompt = QUERY_PLANNER_USER.format(
            title=title or "Untitled",
            content=plain[: self.content_chars],
        )

        try:
            raw = await self.llm.complete(prompt, system=QUERY_PLANNER_SYSTEM)
            plan = QueryPlan.model_validate(extract_json_object(raw))
        except Exception as e:
            logger.warning(f"Query planning failed, using fallback query: {e}")
            return fallback

        query = " ".join(str(plan.search_query).split())
        if not query:
            logger.info("Planner returned an empty query, using fallback")
            return fallback

        logger.info(f"Planned search query: '{query}'")
        return query
