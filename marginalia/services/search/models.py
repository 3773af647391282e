"""
Search service models.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class SearchResult:
    """A single normalized search hit."""

    title: str
    url: str
    snippet: str = ""
    publisher: str = ""
    published_at: str = ""  # provider's display date, kept verbatim

    def to_dict(self) -> dict:
        """Serialize with the persisted (camelCase) source keys."""
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "publisher": self.publisher,
            "publishedAt": self.published_at,
        }

    @classmethod
    def from_serper(cls, raw: dict) -> "SearchResult":
        """Normalize one entry of a Serper ``organic`` list."""
        return cls(
            title=_text(raw.get("title")),
            url=_text(raw.get("link")),
            snippet=_text(raw.get("snippet")),
            publisher=_text(raw.get("source")),
            published_at=_text(raw.get("date")),
        )


def _text(value: Optional[object]) -> str:
    if value is None:
        return ""
    return str(value)
