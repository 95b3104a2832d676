"""
Semantic memory and retrieval.

Persists conversations and finds the ones relevant to a new message.

Key features:
- SQLite-based persistent storage with versioned migrations
- Key-term extraction for keyword matching
- Cached vector embeddings for semantic search
- Keyword (Jaccard) fallback when embeddings are unavailable
- Context injection from earlier conversations
"""

from .types import (
    ChatBio,
    ChatMemory,
    ContextInjection,
    ImagePart,
    Message,
    MessageRole,
    SemanticMatch,
    StoreStats,
    TextPart,
    GistRecord,
    TokenUsageRecord,
    BranchRecord,
    CodespaceRecord,
)

from .keyterms import (
    STOP_WORDS,
    extract_key_terms,
    extract_key_terms_from_messages,
)

from .embeddings import (
    EmbeddingCache,
    EmbeddingProvider,
    HashingEmbedding,
    SentenceTransformerEmbedding,
    cosine_similarity,
    normalize_text,
)

from .similarity import (
    ContextInjector,
    SimilarityEngine,
)

from .analysis import (
    ConversationAnalyzer,
    ParsedMessage,
    parse_message,
)

from .migrations import (
    MIGRATIONS,
    Migration,
    MigrationRunner,
)

from .storage import (
    MemoryStore,
)

from .manager import (
    ChatMemoryManager,
)


__all__ = [
    # Types
    "ChatBio",
    "ChatMemory",
    "ContextInjection",
    "ImagePart",
    "Message",
    "MessageRole",
    "SemanticMatch",
    "StoreStats",
    "TextPart",
    "GistRecord",
    "TokenUsageRecord",
    "BranchRecord",
    "CodespaceRecord",
    # Key terms
    "STOP_WORDS",
    "extract_key_terms",
    "extract_key_terms_from_messages",
    # Embeddings
    "EmbeddingCache",
    "EmbeddingProvider",
    "HashingEmbedding",
    "SentenceTransformerEmbedding",
    "cosine_similarity",
    "normalize_text",
    # Similarity
    "ContextInjector",
    "SimilarityEngine",
    # Analysis
    "ConversationAnalyzer",
    "ParsedMessage",
    "parse_message",
    # Storage
    "MIGRATIONS",
    "Migration",
    "MigrationRunner",
    "MemoryStore",
    # Manager
    "ChatMemoryManager",
]
