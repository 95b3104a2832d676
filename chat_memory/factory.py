"""
Service Factory - Wire configured services together.

Services are constructed once and passed to their dependents; nothing
here keeps module-level state.
"""

import logging
import os
from typing import Optional

from .cache import CacheService
from .config import ChatMemoryConfig
from .llm import LLMError, LLMProvider, OpenAIProvider
from .llm.base import EmbeddingClient
from .memory import (
    ChatMemoryManager,
    ConversationAnalyzer,
    EmbeddingCache,
    EmbeddingProvider,
    HashingEmbedding,
    MemoryStore,
    SentenceTransformerEmbedding,
    SimilarityEngine,
)


logger = logging.getLogger(__name__)


EMBEDDING_BACKENDS = ["openai", "local", "hashing"]


def create_llm_provider(config: ChatMemoryConfig) -> Optional[LLMProvider]:
    """
    Create the chat completion provider.

    Returns:
        The provider, or None when no API key is available.

    Raises:
        LLMError: If the provider is not supported.
    """
    if config.llm.provider.lower() != "openai":
        raise LLMError(
            f"Unknown LLM provider: {config.llm.provider}. Available providers: openai"
        )
    if not (config.llm.api_key or os.environ.get("OPENAI_API_KEY")):
        logger.info("No OpenAI API key configured; using local fallbacks")
        return None
    return OpenAIProvider(config.to_llm_config())


def create_embedding_client(
    config: ChatMemoryConfig,
    llm_provider: Optional[LLMProvider] = None,
) -> Optional[EmbeddingClient]:
    """
    Create the embedding client selected by ``embedding.backend``.

    The "openai" backend reuses the chat completion provider and yields
    None without one, which leaves keyword matching only.

    Raises:
        ValueError: If the backend is unknown.
    """
    backend = config.embedding.backend.lower()
    if backend == "openai":
        return llm_provider
    if backend == "local":
        return SentenceTransformerEmbedding(config.embedding.model)
    if backend == "hashing":
        return HashingEmbedding(config.embedding.dimension)

    available = ", ".join(EMBEDDING_BACKENDS)
    raise ValueError(f"Unknown embedding backend: {backend}. Available backends: {available}")


def create_manager(
    config: ChatMemoryConfig,
    store: Optional[MemoryStore] = None,
    cache: Optional[CacheService] = None,
) -> ChatMemoryManager:
    """
    Build a ChatMemoryManager and its collaborators from configuration.

    Args:
        config: Loaded configuration.
        store: Existing store. Opened from ``store.db_path`` when None.
        cache: Cache for analysis results. Not used when None.
    """
    if store is None:
        store = MemoryStore(db_path=config.store.db_path)

    llm_provider = create_llm_provider(config)
    embedding_client = create_embedding_client(config, llm_provider)

    embedding_provider = None
    if embedding_client is not None:
        embedding_provider = EmbeddingProvider(
            embedding_client,
            EmbeddingCache(max_size=config.embedding.cache_size),
        )

    similarity = SimilarityEngine(
        embedding_provider=embedding_provider,
        store=store,
        embedding_threshold=config.similarity.embedding_threshold,
        keyword_threshold=config.similarity.keyword_threshold,
        max_results=config.similarity.max_results,
    )
    analyzer = ConversationAnalyzer(llm_provider, model=config.llm.model, cache=cache)

    return ChatMemoryManager(
        store,
        analyzer=analyzer,
        similarity=similarity,
        max_key_terms=config.similarity.max_key_terms,
    )
