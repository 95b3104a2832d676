"""
Pytest configuration and shared fixtures.
"""

import pytest
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

from chat_memory.errors import ExternalCallError
from chat_memory.llm.base import (
    EmbeddingClient,
    LLMConfig,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMUsage,
    MessageRole,
)
from chat_memory.memory import HashingEmbedding, MemoryStore


class ManualClock:
    """Clock for cache tests; time only moves when advanced."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbeddingClient(EmbeddingClient):
    """
    Embedding client with canned vectors.

    Texts listed in ``vectors`` get that vector; anything else gets a
    hashing embedding. Texts in ``failing`` (or every text, when
    ``fail_all`` is set) raise ExternalCallError.
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        failing: Optional[List[str]] = None,
        fail_all: bool = False,
    ):
        self.vectors = vectors or {}
        self.failing = set(failing or [])
        self.fail_all = fail_all
        self.calls: List[str] = []
        self._fallback = HashingEmbedding(dimension=16)

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_all or text in self.failing:
            raise ExternalCallError(f"embedding unavailable for {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        return self._fallback.embed(text)


class FakeLLMProvider(LLMProvider):
    """
    LLM provider that answers from a responder callable.

    The responder receives the system prompt and the user prompt.
    """

    def __init__(
        self,
        responder: Optional[Callable[[str, str], str]] = None,
        fail: bool = False,
    ):
        super().__init__(LLMConfig(api_key="test-key"))
        self.responder = responder or (lambda system, user: "fake response")
        self.fail = fail
        self.calls: List[List[LLMMessage]] = []

    def complete(self, messages: List[LLMMessage], **kwargs) -> LLMResponse:
        self.calls.append(messages)
        if self.fail:
            raise LLMError("model unavailable")
        system = next((m.content for m in messages if m.role == MessageRole.SYSTEM), "")
        user = next((m.content for m in messages if m.role == MessageRole.USER), "")
        return LLMResponse(
            content=self.responder(system, user),
            model=kwargs.get("model") or self.config.model,
        )

    def embed(self, text: str) -> List[float]:
        if self.fail:
            raise LLMError("model unavailable")
        return HashingEmbedding(dimension=16).embed(text)


@pytest.fixture
def clock():
    """A manual clock starting at t=1000s."""
    return ManualClock()


@pytest.fixture
def store(tmp_path):
    """A migrated memory store in a temporary directory."""
    memory_store = MemoryStore(db_path=str(tmp_path / "memory.db"))
    yield memory_store
    memory_store.close()


@pytest.fixture
def embedding_client():
    """An embedding client with no canned vectors."""
    return FakeEmbeddingClient()


@pytest.fixture
def llm_provider():
    """A fake LLM provider that always answers."""
    return FakeLLMProvider()


@pytest.fixture
def mock_llm_config():
    """Create a mock LLM configuration."""
    return LLMConfig(
        provider="openai",
        model="gpt-4o-mini",
        api_key="test-key-123",
        temperature=0.7,
        max_tokens=1000,
        max_retries=2,
        retry_delay=0,
    )


@pytest.fixture
def mock_llm_response():
    """Create a mock LLM response."""
    return LLMResponse(
        content="This is a test response from the LLM.",
        model="gpt-4o-mini",
        usage=LLMUsage(
            prompt_tokens=50,
            completion_tokens=20,
            total_tokens=70,
            estimated_cost=0.001,
        ),
        finish_reason="stop",
    )


@pytest.fixture
def mock_openai_client(mock_llm_response):
    """Create a mock OpenAI client."""
    mock_client = MagicMock()

    # Mock chat completion response
    mock_choice = MagicMock()
    mock_choice.message.content = mock_llm_response.content
    mock_choice.message.reasoning_content = None
    mock_choice.finish_reason = mock_llm_response.finish_reason

    mock_response = MagicMock()
    mock_response.model = mock_llm_response.model
    mock_response.choices = [mock_choice]
    mock_response.usage.prompt_tokens = mock_llm_response.usage.prompt_tokens
    mock_response.usage.completion_tokens = mock_llm_response.usage.completion_tokens
    mock_response.usage.total_tokens = mock_llm_response.usage.total_tokens

    mock_client.chat.completions.create.return_value = mock_response

    # Mock embeddings response
    mock_embedding = MagicMock()
    mock_embedding.embedding = [0.1, 0.2, 0.3]
    mock_embedding_response = MagicMock()
    mock_embedding_response.data = [mock_embedding]
    mock_embedding_response.usage.prompt_tokens = 5

    mock_client.embeddings.create.return_value = mock_embedding_response

    return mock_client
