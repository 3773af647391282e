"""
Research record models.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class ResearchStatus(str, Enum):
    """Lifecycle of an article's research record."""
    NONE = "none"
    QUEUED = "queued"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ResearchStatus.READY, ResearchStatus.FAILED)


@dataclass
class Article:
    """The slice of an article the research agent reads."""

    id: int
    title: str = ""
    content_html: str = ""
    is_published: bool = False
    author_user_id: Optional[int] = None


@dataclass
class ResearchSource:
    """A cited external source, persisted with camelCase keys."""

    title: str
    url: str
    snippet: str = ""
    publisher: str = ""
    published_at: str = ""

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "publisher": self.publisher,
            "publishedAt": self.published_at,
        }

    @classmethod
    def from_any(cls, item: Any) -> "ResearchSource":
        """Build from a dict (model output / stored JSON) or a search result."""
        if hasattr(item, "to_dict"):
            item = item.to_dict()
        if not isinstance(item, dict):
            item = {}
        return cls(
            title=_clean(item.get("title")),
            url=_clean(item.get("url")),
            snippet=_clean(item.get("snippet")),
            publisher=_clean(item.get("publisher")),
            published_at=_clean(item.get("publishedAt", item.get("published_at"))),
        )


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_sources(items: Any) -> list[ResearchSource]:
    """Normalize a list of source-like items, dropping entries without a URL."""
    if not isinstance(items, (list, tuple)):
        return []
    sources = [ResearchSource.from_any(item) for item in items]
    return [s for s in sources if s.url]


def normalize_questions(items: Any) -> list[str]:
    """Normalize a list of questions, dropping blanks."""
    if not isinstance(items, (list, tuple)):
        return []
    return [q for q in (_clean(item) for item in items) if q]


@dataclass
class ResearchRecord:
    """
    Persisted research state for one article.

    ``sources`` and ``questions`` are always lists; timestamps are civil-time
    strings (see :mod:`marginalia.utils.timefmt`).
    """

    article_id: int
    status: ResearchStatus = ResearchStatus.NONE
    summary_md: str = ""
    sources: list[ResearchSource] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[str] = None

    def is_expired(self, now: str) -> bool:
        """True once ``now`` (a civil timestamp) has reached ``expires_at``."""
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "articleId": self.article_id,
            "status": self.status.value,
            "summaryMd": self.summary_md,
            "sources": [s.to_dict() for s in self.sources],
            "questions": list(self.questions),
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "ResearchRecord":
        """Build from a database row (mapping with snake_case columns)."""
        return cls(
            article_id=row["article_id"],
            status=ResearchStatus(row["status"] or ResearchStatus.NONE.value),
            summary_md=row["summary_md"] or "",
            sources=normalize_sources(_load_json_list(row["sources_json"])),
            questions=normalize_questions(_load_json_list(row["questions_json"])),
            error_message=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            expires_at=row["expires_at"],
        )


def _load_json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def dump_sources(sources: Iterable[ResearchSource]) -> str:
    return json.dumps([ResearchSource.from_any(s).to_dict() for s in sources])


def dump_questions(questions: Iterable[str]) -> str:
    return json.dumps(list(questions))
