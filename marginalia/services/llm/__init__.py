"""LLM Service - OpenAI-compatible chat completions."""
from .base import LLMService
from .openai_compat import OpenAICompatibleService

__all__ = ["LLMService", "OpenAICompatibleService"]
