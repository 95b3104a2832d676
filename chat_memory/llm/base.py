"""
Base LLM Provider - Abstract base class and data structures for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..errors import ExternalCallError


class MessageRole(str, Enum):
    """Role of the message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class LLMMessage:
    """Represents a message in an LLM conversation."""
    role: MessageRole
    content: str

    def to_dict(self) -> dict:
        """Convert to dictionary format."""
        return {
            "role": self.role.value,
            "content": self.content,
        }


@dataclass
class LLMUsage:
    """Token usage information for an LLM request."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    # Cost estimation (in USD)
    estimated_cost: float = 0.0

    def __add__(self, other: "LLMUsage") -> "LLMUsage":
        """Add usage from multiple requests."""
        return LLMUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            estimated_cost=self.estimated_cost + other.estimated_cost,
        )


@dataclass
class LLMResponse:
    """Response from an LLM provider."""
    content: str
    model: str
    usage: LLMUsage = field(default_factory=LLMUsage)
    finish_reason: Optional[str] = None
    thinking: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary format."""
        return {
            "content": self.content,
            "model": self.model,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
                "estimated_cost": self.usage.estimated_cost,
            },
            "finish_reason": self.finish_reason,
            "thinking": self.thinking,
        }


@dataclass
class LLMConfig:
    """Configuration for an LLM provider."""
    provider: str = "openai"
    model: str = ""
    embedding_model: str = ""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout: float = 60.0

    # Retry configuration
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        """Set default models based on provider if not specified."""
        if not self.model:
            default_models = {
                "openai": "gpt-4o-mini",
            }
            self.model = default_models.get(self.provider, "gpt-4o-mini")
        if not self.embedding_model:
            self.embedding_model = "text-embedding-3-small"


class LLMError(ExternalCallError):
    """Base exception for LLM-related errors."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Raised when authentication fails."""
    pass


class EmbeddingClient(ABC):
    """Anything that can turn text into an embedding vector."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Return an embedding vector for text.

        Raises:
            ExternalCallError: If the embedding cannot be produced.
        """
        pass


class LLMProvider(EmbeddingClient):
    """
    Abstract base class for LLM providers.

    A provider supplies the two capabilities the memory engine consumes:
    chat completion (used for summaries, tags and titles) and text
    embeddings (used for semantic search).
    """

    def __init__(self, config: LLMConfig):
        """
        Initialize the LLM provider.

        Args:
            config: Configuration for the provider.
        """
        self.config = config
        self._total_usage = LLMUsage()

    @property
    def total_usage(self) -> LLMUsage:
        """Get total usage across all requests."""
        return self._total_usage

    @abstractmethod
    def complete(
        self,
        messages: List[LLMMessage],
        **kwargs,
    ) -> LLMResponse:
        """
        Generate a completion for the given messages.

        Args:
            messages: List of messages in the conversation.
            **kwargs: Additional provider-specific options (model, temperature).

        Returns:
            LLMResponse with the generated content.
        """
        pass

    def _calculate_cost(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        model: str,
    ) -> float:
        """
        Calculate estimated cost for the request.

        Args:
            prompt_tokens: Number of input tokens.
            completion_tokens: Number of output tokens.
            model: Model name.

        Returns:
            Estimated cost in USD.
        """
        # Pricing per 1000 tokens (approximate)
        pricing = {
            "gpt-4o-mini": (0.00015, 0.0006),
            "gpt-4o": (0.005, 0.015),
            "gpt-4-turbo": (0.01, 0.03),
            "gpt-3.5-turbo": (0.0005, 0.0015),
            "text-embedding-3-small": (0.00002, 0.0),
            "text-embedding-3-large": (0.00013, 0.0),
        }

        for model_prefix, (input_price, output_price) in pricing.items():
            if model.lower().startswith(model_prefix):
                input_cost = (prompt_tokens / 1000) * input_price
                output_cost = (completion_tokens / 1000) * output_price
                return input_cost + output_cost

        return 0.0

    def _record_usage(self, usage: LLMUsage) -> None:
        self._total_usage = self._total_usage + usage

    def reset_usage(self):
        """Reset usage tracking."""
        self._total_usage = LLMUsage()
