"""Search Service - Serper web search."""
from .base import SearchService
from .serper import SerperSearchService
from .models import SearchResult

__all__ = [
    "SearchService",
    "SerperSearchService",
    "SearchResult",
]
