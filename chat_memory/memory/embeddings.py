"""
Embeddings for semantic search.

Provides a bounded embedding cache, a caching embedding provider that
wraps an external embedding client, local embedding clients and the
cosine similarity used to compare vectors.
"""

import hashlib
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from ..errors import DimensionMismatchError, ExternalCallError
from ..llm.base import EmbeddingClient
from .keyterms import tokenize

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    """Normalize text into an embedding cache key."""
    return text.strip().lower()


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Returns a value between -1 and 1, or 0.0 when either vector has
    zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(vec1) != len(vec2):
        raise DimensionMismatchError(len(vec1), len(vec2))

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)

    denominator = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denominator == 0:
        return 0.0

    return float(np.dot(a, b) / denominator)


@dataclass
class EmbeddingCacheEntry:
    """A cached embedding vector."""

    normalized_text: str
    embedding: List[float]
    timestamp: float = field(default_factory=time.time)


class EmbeddingCache:
    """
    Bounded cache of embedding vectors keyed by normalized text.

    Eviction is by insertion order: once the cache is full the entry
    inserted first is removed. Reads do not refresh an entry's position.
    """

    DEFAULT_MAX_SIZE = 100

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        """
        Initialize the embedding cache.

        Args:
            max_size: Maximum number of cached vectors.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: "OrderedDict[str, EmbeddingCacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, normalized_text: str) -> Optional[List[float]]:
        """Return the cached vector for normalized text, if any."""
        with self._lock:
            entry = self._entries.get(normalized_text)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.embedding

    def put(self, normalized_text: str, embedding: List[float]) -> None:
        """Cache a vector, evicting the oldest insertion when full."""
        with self._lock:
            existing = self._entries.get(normalized_text)
            if existing is not None:
                existing.embedding = embedding
                existing.timestamp = time.time()
                return

            while len(self._entries) >= self.max_size:
                oldest_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted embedding for {oldest_key[:32]!r}")

            self._entries[normalized_text] = EmbeddingCacheEntry(
                normalized_text=normalized_text,
                embedding=embedding,
            )

    def __contains__(self, normalized_text: str) -> bool:
        with self._lock:
            return normalized_text in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        """Cached keys, oldest insertion first."""
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }


class EmbeddingProvider:
    """
    Caching front for an embedding client.

    Identical queries (ignoring surrounding whitespace and case) share
    one cache entry. Client failures propagate as ExternalCallError so
    callers can fall back to keyword matching.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        cache: Optional[EmbeddingCache] = None,
    ):
        self._client = client
        self._cache = cache if cache is not None else EmbeddingCache()

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    def embed(self, text: str) -> List[float]:
        """
        Get the embedding vector for text.

        Raises:
            ExternalCallError: If the embedding client fails.
        """
        normalized = normalize_text(text)

        cached = self._cache.get(normalized)
        if cached is not None:
            logger.debug("Using cached embedding")
            return cached

        try:
            embedding = self._client.embed(text)
        except ExternalCallError:
            raise
        except Exception as e:
            raise ExternalCallError(f"Embedding request failed: {e}") from e

        if not embedding:
            raise ExternalCallError("Embedding client returned an empty vector")

        embedding = [float(x) for x in embedding]
        self._cache.put(normalized, embedding)
        return embedding


class HashingEmbedding(EmbeddingClient):
    """
    Hash-based bag-of-words embedding.

    A lightweight client that needs no network or model download.
    Texts sharing words get similar vectors, which is enough for
    offline use and tests but is not a semantic model.
    """

    DEFAULT_DIMENSION = 128

    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """Generate an L2-normalized hashed word-count vector."""
        vector = [0.0] * self._dimension
        words = tokenize(text)
        if not words:
            return vector

        for word in words:
            word_hash = int(hashlib.md5(word.encode()).hexdigest(), 16)
            index = word_hash % self._dimension
            vector[index] += 1.0 / len(words)

        magnitude = math.sqrt(sum(x * x for x in vector))
        return [x / magnitude for x in vector]


class SentenceTransformerEmbedding(EmbeddingClient):
    """
    Sentence-transformers based embedding client.

    Runs a local pre-trained model. Requires the sentence-transformers
    library (``pip install chat-memory-engine[local]``).
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or self.DEFAULT_MODEL
        self._model = None

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ExternalCallError(
                    "sentence-transformers not installed. "
                    "Install with: pip install chat-memory-engine[local]"
                ) from e
            self._model = SentenceTransformer(self.model_name)
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    def embed(self, text: str) -> List[float]:
        embedding = self.model.encode(text, convert_to_numpy=True)
        return embedding.tolist()
