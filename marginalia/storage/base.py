"""
Storage Base Interfaces.

Abstract base classes for storage implementations.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from marginalia.core.research.models import Article, ResearchRecord


class _Unset:
    """Marker for upsert fields the caller did not supply."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class ResearchStore(ABC):
    """
    Persistence for the one research record each article owns.
    """

    @abstractmethod
    async def get(self, article_id: int) -> Optional[ResearchRecord]:
        """
        Get the research record for an article.

        Returns:
            The record if one exists, None otherwise
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        article_id: int,
        *,
        status: Any = UNSET,
        summary_md: Any = UNSET,
        sources: Any = UNSET,
        questions: Any = UNSET,
        error_message: Any = UNSET,
        expires_at: Any = UNSET,
    ) -> ResearchRecord:
        """
        Insert the record if absent, otherwise update it in place.

        Only the supplied fields change; passing ``None`` explicitly clears
        ``error_message`` or ``expires_at``. ``updated_at`` is refreshed on
        every call.

        Returns:
            The record as stored after the write
        """
        pass

    @abstractmethod
    async def list_expired(self, now: Optional[str] = None) -> list[ResearchRecord]:
        """
        Ready records whose ``expires_at`` is at or before ``now``.

        Args:
            now: Civil timestamp to compare against; defaults to the current time
        """
        pass


class ArticleStore(ABC):
    """Read-only access to the blog's articles."""

    @abstractmethod
    async def get_article(self, article_id: int) -> Optional[Article]:
        """Return the article, or None if it does not exist."""
        pass
