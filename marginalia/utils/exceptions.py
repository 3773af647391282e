"""
Custom exceptions for Marginalia.

All application-specific exceptions inherit from MarginaliaError.
"""

from typing import Optional


class MarginaliaError(Exception):
    """Base exception for all Marginalia errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details
        self.recoverable = recoverable

    def to_dict(self, safe: bool = False) -> dict:
        """Convert exception to dictionary for API responses.

        Args:
            safe: If True, omit internal details (use in production).
        """
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }
        if not safe and self.details:
            result["error"]["details"] = self.details
        return result


# --- Config Errors ---

class ConfigError(MarginaliaError):
    """A required external credential or setting is missing."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(
            message=message,
            code="CONFIG_ERROR",
            details=details,
            recoverable=False,
        )


# --- Search Errors ---

class SearchError(MarginaliaError):
    """Search API returned an error or an unusable payload."""

    def __init__(
        self,
        message: str,
        code: str = "SEARCH_ERROR",
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message=message, code=code, details=details, recoverable=False)
        self.status_code = status_code


# --- Fetch Errors ---

class FetchError(MarginaliaError):
    """Errors related to fetching external pages."""

    def __init__(self, message: str, url: str, code: str = "FETCH_ERROR"):
        super().__init__(
            message=message,
            code=code,
            details=f"URL: {url}",
            recoverable=False,
        )
        self.url = url


class FetchBlockedError(FetchError):
    """Target URL is not allowed (bad scheme, local host, private address)."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Blocked URL: {reason}", url, code="FETCH_BLOCKED")
        self.reason = reason


class FetchTimeoutError(FetchError):
    """Page download exceeded its deadline."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Fetch timed out after {timeout}s", url, code="FETCH_TIMEOUT")
        self.timeout = timeout


class FetchHTTPError(FetchError):
    """Page responded with a non-2xx status."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"Fetch failed ({status_code})", url, code="FETCH_HTTP_ERROR")
        self.status_code = status_code


class FetchTooLargeError(FetchError):
    """Response body exceeded the byte cap."""

    def __init__(self, url: str, max_bytes: int):
        super().__init__("Response exceeds size limit", url, code="FETCH_TOO_LARGE")
        self.max_bytes = max_bytes


# --- LLM Errors ---

class LLMError(MarginaliaError):
    """Errors related to LLM operations."""
    pass


class LLMTimeoutError(LLMError):
    """LLM inference timed out."""

    def __init__(self, model: str, timeout: float):
        super().__init__(
            message=f"LLM inference timed out after {timeout}s",
            code="LLM_TIMEOUT",
            details=f"Model: {model}",
            recoverable=True,
        )


class LLMConnectionError(LLMError):
    """Cannot connect to LLM provider."""

    def __init__(self, provider: str, details: Optional[str] = None):
        super().__init__(
            message=f"Cannot connect to LLM provider: {provider}",
            code="LLM_CONNECTION_ERROR",
            details=details,
            recoverable=True,
        )


# --- Research Errors ---

class ResearchError(MarginaliaError):
    """Errors raised while running the research pipeline."""
    pass


class SynthesisParseError(ResearchError):
    """Model output did not contain a decodable JSON payload."""

    def __init__(self, reason: str, details: Optional[str] = None):
        super().__init__(
            message=reason,
            code="SYNTHESIS_PARSE_ERROR",
            details=details,
            recoverable=False,
        )


class ResearchTimeoutError(ResearchError):
    """A run exceeded its mode's time budget."""

    def __init__(self, timeout: float):
        super().__init__(
            message="Research timed out",
            code="RESEARCH_TIMEOUT",
            details=f"Budget: {timeout}s",
            recoverable=True,
        )
        self.timeout = timeout


class ArticleNotFoundError(ResearchError):
    """The article to research does not exist."""

    def __init__(self, article_id):
        super().__init__(
            message="Article not found",
            code="ARTICLE_NOT_FOUND",
            details=f"Article: {article_id}",
            recoverable=False,
        )


class RateLimitExceededError(MarginaliaError):
    """Too many research runs were triggered for one key."""

    def __init__(self, key: str, retry_after_ms: int):
        super().__init__(
            message="Too many research requests, try again later",
            code="RATE_LIMITED",
            details=f"Key: {key}",
            recoverable=True,
        )
        self.key = key
        self.retry_after_ms = retry_after_ms
