"""
Summary Synthesizer.

Asks the language model for a cited bullet summary of the fetched sources,
validates the JSON reply and guarantees every bullet carries a citation.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from marginalia.config import get_settings
from marginalia.core.research.models import (
    Article,
    ResearchSource,
    normalize_questions,
    normalize_sources,
)
from marginalia.core.research.parsing import extract_json_object
from marginalia.core.research.prompts import (
    SYNTHESIS_SOURCE_BLOCK,
    SYNTHESIS_SYSTEM,
    SYNTHESIS_USER,
)
from marginalia.processing import html_to_plain
from marginalia.services.llm.base import LLMService
from marginalia.utils.exceptions import SynthesisParseError
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)

_URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
_BULLET_PREFIX = re.compile(r"^\s*-\s*")


class SynthesisOutput(BaseModel):
    """Structured output expected from the synthesis prompt."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary_md: str = Field(default="", alias="summaryMd")
    sources: list[Any] = Field(default_factory=list)
    questions: list[Any] = Field(default_factory=list)

    @field_validator("summary_md", mode="before")
    @classmethod
    def _null_summary(cls, v):
        return "" if v is None else v

    @field_validator("sources", "questions", mode="before")
    @classmethod
    def _null_list(cls, v):
        return [] if v is None else v


@dataclass
class SynthesisResult:
    """Final, post-processed synthesis."""
    summary_md: str
    sources: list[ResearchSource] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)


def add_inline_citations(summary_md: str, sources: Sequence[ResearchSource]) -> str:
    """
    Make sure every bullet of ``summary_md`` cites a URL.

    Each non-empty line is treated as a bullet. Bullets without a URL get the
    URL of a source appended in parentheses, cycling through ``sources`` in
    the order the uncited bullets appear. Bullets that already hold a URL are
    kept as they are.
    """
    if not summary_md or not sources:
        return summary_md

    bullets = [
        _BULLET_PREFIX.sub("", line.strip()).strip()
        for line in summary_md.split("\n")
        if line.strip()
    ]
    if not bullets:
        return summary_md

    cited = []
    idx = 0
    for bullet in bullets:
        if _URL_PATTERN.search(bullet):
            cited.append(bullet)
            continue
        url = sources[idx % len(sources)].url
        idx += 1
        cited.append(f"{bullet} ({url})" if url else bullet)

    return "\n".join(f"- {line}" for line in cited)


class SummarySynthesizer:
    """Builds the synthesis prompt and interprets the model's reply."""

    def __init__(
        self,
        llm: LLMService,
        article_chars: Optional[int] = None,
        source_chars: Optional[int] = None,
    ):
        settings = get_settings()
        self.llm = llm
        self.article_chars = article_chars or settings.research.article_excerpt_chars
        self.source_chars = source_chars or settings.research.source_text_chars

    def build_prompt(
        self,
        article: Article,
        sources: Sequence[ResearchSource],
        source_texts: Sequence[str],
    ) -> str:
        blocks = []
        for idx, source in enumerate(sources):
            text = source_texts[idx] if idx < len(source_texts) else ""
            blocks.append(
                SYNTHESIS_SOURCE_BLOCK.format(
                    index=idx + 1,
                    title=source.title,
                    url=source.url,
                    snippet=source.snippet,
                    text=(text or "")[: self.source_chars],
                )
            )

        return SYNTHESIS_USER.format(
            title=article.title or "Untitled",
            content=html_to_plain(article.content_html)[: self.article_chars],
            sources="\n\n".join(blocks),
        )

    def parse(self, raw: str) -> SynthesisOutput:
        """Decode the model reply or raise :class:`SynthesisParseError`."""
        try:
            data = extract_json_object(raw)
        except ValueError as e:
            logger.error(f"Synthesis output had no JSON object: {(raw or '')[:200]}")
            raise SynthesisParseError(str(e), details=(raw or "")[:500]) from e

        try:
            return SynthesisOutput.model_validate(data)
        except ValidationError as e:
            logger.error(f"Synthesis output failed validation: {e}")
            raise SynthesisParseError("LLM output did not match the summary schema", details=str(e)) from e

    async def synthesize(
        self,
        article: Article,
        sources: Sequence[ResearchSource],
        source_texts: Sequence[str],
    ) -> SynthesisResult:
        """
        Produce a cited summary for ``article`` from the fetched sources.

        Raises:
            SynthesisParseError: if the reply holds no decodable payload
            LLMError / ConfigError: if the model call fails
        """
        prompt = self.build_prompt(article, sources, source_texts)
        raw = await self.llm.complete(prompt, system=SYNTHESIS_SYSTEM)
        output = self.parse(raw)

        questions = normalize_questions(output.questions)
        final_sources = normalize_sources(output.sources) or normalize_sources(list(sources))
        summary_md = add_inline_citations(output.summary_md.strip(), final_sources)

        logger.info(
            f"Synthesized summary: {len(summary_md)} chars, "
            f"{len(final_sources)} sources, {len(questions)} questions"
        )
        return SynthesisResult(summary_md=summary_md, sources=final_sources, questions=questions)
