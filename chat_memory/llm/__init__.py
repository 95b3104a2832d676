"""
LLM integration for the chat memory engine.

Supplies the chat completion and embedding capabilities that the
memory engine consumes.
"""

from .base import (
    EmbeddingClient,
    LLMProvider,
    LLMConfig,
    LLMResponse,
    LLMMessage,
    LLMUsage,
    MessageRole,
    LLMError,
    LLMRateLimitError,
    LLMAuthenticationError,
)
from .openai_provider import OpenAIProvider


__all__ = [
    "EmbeddingClient",
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "LLMMessage",
    "LLMUsage",
    "MessageRole",
    "LLMError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "OpenAIProvider",
]
