"""
Abstract base class for LLM services.
"""

from abc import ABC, abstractmethod
from typing import Optional

from marginalia.services.llm.models import GenerationConfig, GenerationResult


class LLMService(ABC):
    """
    Abstract interface for LLM providers.

    The research pipeline only needs single-turn completions, so the
    interface is one generation call plus a text convenience wrapper.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResult:
        """
        Generate text from a prompt.

        Args:
            prompt: User prompt
            system: Optional system message
            config: Per-request generation options

        Returns:
            GenerationResult with generated text

        Raises:
            ConfigError: If no API credential is configured
            LLMError: If generation fails
        """
        pass

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Return only the generated text for a prompt."""
        result = await self.generate(prompt, system=system)
        return result.content

    async def close(self) -> None:
        """Release any held network resources."""
        return None
