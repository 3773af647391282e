"""
Serper web search service implementation.
"""

import time
from typing import Optional

import httpx

from marginalia.config import get_settings
from marginalia.services.search.base import SearchService
from marginalia.services.search.models import SearchResult
from marginalia.utils.exceptions import ConfigError, SearchError
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)


class SerperSearchService(SearchService):
    """
    Google results via the Serper API.

    The API key is checked when a search is made, not at construction,
    so the application can start without search configured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.search.api_key
        self.endpoint = endpoint or settings.search.endpoint
        self.timeout = timeout or settings.search.timeout

        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str, limit: int = 6) -> list[SearchResult]:
        """Execute a search query against Serper."""
        if not self.api_key:
            raise ConfigError(
                "Missing SERPER_API_KEY for web search",
                details="Set MARGINALIA_SEARCH_API_KEY or SERPER_API_KEY",
            )

        start_time = time.time()
        logger.debug(f"Searching Serper: '{query}' (limit={limit})")

        try:
            client = await self._get_client()
            response = await client.post(
                self.endpoint,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json={"q": query, "num": limit},
            )
        except httpx.TimeoutException as e:
            logger.error(f"Serper timeout for query: {query}")
            raise SearchError(
                f"Search timed out after {self.timeout}s", code="SEARCH_TIMEOUT"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Cannot reach Serper at {self.endpoint}: {e}")
            raise SearchError(f"Search request failed: {e}", code="SEARCH_CONNECTION_ERROR") from e

        if not response.is_success:
            excerpt = response.text[:200]
            logger.error(f"Serper HTTP error: {response.status_code}")
            raise SearchError(
                f"Search failed ({response.status_code}): {excerpt}",
                code="SEARCH_HTTP_ERROR",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SearchError("Search returned malformed JSON", code="SEARCH_BAD_PAYLOAD") from e

        if not isinstance(data, dict):
            raise SearchError("Search returned an unexpected payload", code="SEARCH_BAD_PAYLOAD")

        organic = data.get("organic")
        if not isinstance(organic, list):
            organic = []

        results = [SearchResult.from_serper(item) for item in organic if isinstance(item, dict)]

        logger.info(
            f"Search complete: '{query}' -> {len(results)} results "
            f"in {time.time() - start_time:.2f}s"
        )
        return results
