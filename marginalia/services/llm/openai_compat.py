"""
OpenAI-compatible chat completions service (DashScope, OpenAI, vLLM, ...).
"""

import time
from typing import Optional

import httpx

from marginalia.config import get_settings
from marginalia.services.llm.base import LLMService
from marginalia.services.llm.models import (
    GenerationConfig,
    GenerationResult,
    LLMMessage,
    LLMRole,
    TokenUsage,
)
from marginalia.utils.exceptions import (
    ConfigError,
    LLMConnectionError,
    LLMError,
    LLMTimeoutError,
)
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)


class OpenAICompatibleService(LLMService):
    """
    Chat completions over the OpenAI wire format.

    The API key is checked lazily so the application can start even when
    AI keys are not configured.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.llm.base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.llm.api_key
        self.default_model = model or settings.llm.model
        self.timeout = timeout or settings.llm.timeout
        self.default_temperature = settings.llm.temperature
        self.default_max_tokens = settings.llm.max_tokens

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

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResult:
        """Run a single-turn chat completion."""
        if not self.api_key:
            raise ConfigError(
                "Missing DASHSCOPE_API_KEY or OPENAI_API_KEY environment variable.",
                details="Set MARGINALIA_LLM_API_KEY to enable language model calls",
            )

        config = config or GenerationConfig()
        model = config.model or self.default_model

        messages = [
            LLMMessage(LLMRole.SYSTEM, system or "You are a helpful assistant."),
            LLMMessage(LLMRole.USER, prompt),
        ]
        payload = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": (
                config.temperature if config.temperature is not None else self.default_temperature
            ),
            "max_tokens": config.max_tokens or self.default_max_tokens,
        }

        logger.debug(f"Generating with {model}: {prompt[:100]}...")
        start_time = time.time()

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"LLM timeout for model {model}")
            raise LLMTimeoutError(model, self.timeout) from e
        except httpx.ConnectError as e:
            logger.error(f"Cannot connect to LLM endpoint at {self.base_url}")
            raise LLMConnectionError(self.base_url, str(e)) from e
        except httpx.HTTPStatusError as e:
            logger.error(f"LLM HTTP error: {e.response.status_code}")
            raise LLMError(
                f"LLM request failed with status {e.response.status_code}",
                code="LLM_HTTP_ERROR",
                details=e.response.text[:200],
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}", code="LLM_HTTP_ERROR") from e
        except ValueError as e:
            raise LLMError("LLM returned malformed JSON", code="LLM_BAD_PAYLOAD") from e

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("LLM response has no choices", code="LLM_BAD_PAYLOAD") from e

        raw_usage = data.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=raw_usage.get("prompt_tokens", 0),
            completion_tokens=raw_usage.get("completion_tokens", 0),
            total_tokens=raw_usage.get("total_tokens", 0),
        )
        generation_time = time.time() - start_time

        logger.info(
            f"Generated {usage.completion_tokens} tokens with {model} "
            f"in {generation_time:.2f}s"
        )

        return GenerationResult(
            content=content,
            model=model,
            usage=usage,
            generation_time=generation_time,
            finish_reason=choice.get("finish_reason"),
        )
