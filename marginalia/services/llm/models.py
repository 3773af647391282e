"""
LLM service models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LLMRole(str, Enum):
    """Message role in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class LLMMessage:
    """A single message in a conversation."""

    role: LLMRole
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass
class GenerationConfig:
    """Per-request generation options.

    Note: This is different from marginalia.config.LLMConfig which holds
    application-level LLM service settings.
    """

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class TokenUsage:
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class GenerationResult:
    """Result of an LLM generation."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    generation_time: float = 0.0
    finish_reason: Optional[str] = None
