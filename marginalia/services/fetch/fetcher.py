"""
SSRF-safe HTTP page fetcher.

Every hop (including redirects) is validated before any request is made,
the whole download runs under a deadline, and the body is read in a
streaming fashion with a hard byte cap.
"""

import asyncio
import time
from typing import Optional
from urllib.parse import urljoin

import httpx

from marginalia.config import get_settings
from marginalia.utils.exceptions import (
    FetchError,
    FetchHTTPError,
    FetchTimeoutError,
    FetchTooLargeError,
)
from marginalia.utils.logging import get_logger
from marginalia.utils.url_validation import Resolver, ensure_public_url

logger = get_logger(__name__)


class SafeFetcher:
    """
    Fetches external pages for the research pipeline.

    Failures raise a :class:`FetchError` subclass so callers can tell a
    blocked target, a timeout, a non-2xx status and an oversize body apart.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        max_redirects: Optional[int] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        resolver: Optional[Resolver] = None,
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.fetch.timeout
        self.max_bytes = max_bytes if max_bytes is not None else settings.fetch.max_bytes
        self.max_redirects = (
            max_redirects if max_redirects is not None else settings.fetch.max_redirects
        )
        self.user_agent = user_agent or settings.fetch.user_agent

        self._client = client
        self._owns_client = client is None
        self._resolver = resolver

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client. Redirects are followed by hand."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
            )
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ) -> str:
        """
        Download a page and return its body as text.

        Args:
            url: Absolute http(s) URL
            timeout: Deadline in seconds for the whole download
            max_bytes: Hard cap on the response body size

        Raises:
            FetchBlockedError: target rejected before any request was sent
            FetchTimeoutError: deadline passed
            FetchHTTPError: non-2xx response
            FetchTooLargeError: body exceeded ``max_bytes``
            FetchError: any other transport failure
        """
        timeout = timeout if timeout is not None else self.timeout
        max_bytes = max_bytes if max_bytes is not None else self.max_bytes
        start_time = time.time()

        try:
            body = await asyncio.wait_for(self._download(url, max_bytes), timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Fetch timeout for {url}")
            raise FetchTimeoutError(url, timeout) from e
        except httpx.TimeoutException as e:
            logger.warning(f"HTTP timeout for {url}")
            raise FetchTimeoutError(url, timeout) from e
        except httpx.HTTPError as e:
            logger.warning(f"Fetch error for {url}: {e}")
            raise FetchError(f"Fetch failed: {e}", url) from e

        logger.info(f"Fetched {url}: {len(body)} chars in {time.time() - start_time:.2f}s")
        return body

    async def _download(self, url: str, max_bytes: int) -> str:
        current = url
        for _ in range(self.max_redirects + 1):
            await ensure_public_url(current, self._resolver)
            client = await self._get_client()

            async with client.stream(
                "GET", current, headers={"User-Agent": self.user_agent}
            ) as response:
                location = response.headers.get("location")
                if response.is_redirect and location:
                    current = urljoin(str(response.url), location)
                    logger.debug(f"Following redirect to {current}")
                    continue

                if not response.is_success:
                    logger.warning(f"HTTP {response.status_code} for {current}")
                    raise FetchHTTPError(current, response.status_code)

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > max_bytes:
                    raise FetchTooLargeError(current, max_bytes)

                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > max_bytes:
                        raise FetchTooLargeError(current, max_bytes)
                    chunks.append(chunk)

                return _decode(b"".join(chunks), response.charset_encoding)

        raise FetchError("Too many redirects", url, code="FETCH_TOO_MANY_REDIRECTS")


def _decode(body: bytes, charset: Optional[str]) -> str:
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")
