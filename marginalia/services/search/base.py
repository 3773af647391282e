"""
Abstract base class for search services.
"""

from abc import ABC, abstractmethod

from marginalia.services.search.models import SearchResult


class SearchService(ABC):
    """
    Abstract interface for web search providers.

    Implementations make a single external call per search and do not retry;
    retry policy belongs to the caller.
    """

    @abstractmethod
    async def search(self, query: str, limit: int = 6) -> list[SearchResult]:
        """
        Execute a search query.

        Args:
            query: Search query string
            limit: Maximum number of results to request

        Returns:
            Ordered list of normalized results

        Raises:
            ConfigError: If no API credential is configured
            SearchError: On a non-success response or malformed payload
        """
        pass

    async def close(self) -> None:
        """Release any held network resources."""
        return None
