"""
Chat Memory - semantic memory and retrieval for chat conversations.

Remembers earlier conversations and finds the ones relevant to a new
message, so their summaries can be injected into the prompt.

Key Features:
- Key-term extraction and keyword (Jaccard) matching
- Cached embeddings with cosine similarity search
- SQLite memory store with versioned, reversible migrations
- Size and TTL bounded two-tier cache
- LLM-generated summaries, tags and titles with local fallbacks
"""

from .errors import (
    ChatMemoryError,
    DimensionMismatchError,
    ExternalCallError,
    MigrationError,
    SerializationError,
    StorageError,
)

from .config import (
    ChatMemoryConfig,
    load_config,
)

from .cache import (
    CacheService,
    CacheStats,
    DiskTier,
)

from .llm import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    LLMMessage,
    OpenAIProvider,
)

from .memory import (
    ChatMemory,
    ChatMemoryManager,
    ContextInjection,
    ContextInjector,
    ConversationAnalyzer,
    EmbeddingCache,
    EmbeddingProvider,
    HashingEmbedding,
    MemoryStore,
    Message,
    MessageRole,
    MigrationRunner,
    SemanticMatch,
    SimilarityEngine,
    cosine_similarity,
    extract_key_terms,
)

from .factory import create_manager


__version__ = "0.1.0"

__all__ = [
    # Errors
    "ChatMemoryError",
    "DimensionMismatchError",
    "ExternalCallError",
    "MigrationError",
    "SerializationError",
    "StorageError",
    # Configuration
    "ChatMemoryConfig",
    "load_config",
    # Cache
    "CacheService",
    "CacheStats",
    "DiskTier",
    # LLM
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "LLMMessage",
    "OpenAIProvider",
    # Memory
    "ChatMemory",
    "ChatMemoryManager",
    "ContextInjection",
    "ContextInjector",
    "ConversationAnalyzer",
    "EmbeddingCache",
    "EmbeddingProvider",
    "HashingEmbedding",
    "MemoryStore",
    "Message",
    "MessageRole",
    "MigrationRunner",
    "SemanticMatch",
    "SimilarityEngine",
    "cosine_similarity",
    "extract_key_terms",
    # Factory
    "create_manager",
]
