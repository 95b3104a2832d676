"""
Similarity search over chat memories.

Scores a query against the summaries of stored conversations using
embeddings and cosine similarity, falling back to key-term overlap
(Jaccard index) when the query cannot be embedded.
"""

import logging
from typing import List, Optional, Sequence

from ..errors import ChatMemoryError, ExternalCallError
from .embeddings import EmbeddingProvider, cosine_similarity
from .keyterms import extract_key_terms
from .types import ChatMemory, ContextInjection, SemanticMatch


logger = logging.getLogger(__name__)


CONTEXT_TEMPLATE = "Previous conversation context: {summary}"


class SimilarityEngine:
    """
    Ranks chat memories by relevance to a query.

    Cosine scores on dense embeddings and Jaccard scores on small term
    sets live in different numeric ranges, so each path has its own
    default threshold.

    Example:
        >>> engine = SimilarityEngine(EmbeddingProvider(HashingEmbedding()), store)
        >>> matches = engine.find_semantic_matches("python api bug", memories)
    """

    DEFAULT_EMBEDDING_THRESHOLD = 0.7
    DEFAULT_KEYWORD_THRESHOLD = 0.3
    DEFAULT_MAX_RESULTS = 3
    QUERY_TERMS = 20

    def __init__(
        self,
        embedding_provider: Optional[EmbeddingProvider] = None,
        store=None,
        embedding_threshold: float = DEFAULT_EMBEDDING_THRESHOLD,
        keyword_threshold: float = DEFAULT_KEYWORD_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ):
        """
        Initialize the similarity engine.

        Args:
            embedding_provider: Source of embedding vectors. Without one,
                only keyword matching is used.
            store: Optional MemoryStore; newly computed memory embeddings
                are persisted to it.
            embedding_threshold: Minimum cosine similarity.
            keyword_threshold: Minimum Jaccard index.
            max_results: Maximum number of matches returned.
        """
        self._embedding_provider = embedding_provider
        self._store = store
        self.embedding_threshold = embedding_threshold
        self.keyword_threshold = keyword_threshold
        self.max_results = max_results

    @property
    def embedding_provider(self) -> Optional[EmbeddingProvider]:
        return self._embedding_provider

    def find_semantic_matches(
        self,
        query: str,
        memories: Sequence[ChatMemory],
        threshold: Optional[float] = None,
    ) -> List[SemanticMatch]:
        """
        Find the memories most relevant to a query.

        Tries the embedding path first. If the query itself cannot be
        embedded, falls back to keyword matching.

        Args:
            query: The new message text
            memories: Candidate memories
            threshold: Minimum score, applied to whichever path runs.
                Defaults to the threshold of that path.

        Returns:
            Matches sorted by descending score, at most max_results.
        """
        if self._embedding_provider is not None:
            try:
                return self.find_semantic_matches_by_embedding(query, memories, threshold)
            except ExternalCallError as e:
                logger.warning(f"Embedding search failed, falling back to keywords: {e}")

        return self.find_semantic_matches_by_keywords(query, memories, threshold)

    def find_semantic_matches_by_embedding(
        self,
        query: str,
        memories: Sequence[ChatMemory],
        threshold: Optional[float] = None,
    ) -> List[SemanticMatch]:
        """
        Rank memories by cosine similarity of their summary embeddings.

        Raises:
            ExternalCallError: If the query cannot be embedded or no
                embedding provider is configured.
        """
        if self._embedding_provider is None:
            raise ExternalCallError("No embedding provider configured")
        if threshold is None:
            threshold = self.embedding_threshold

        query_embedding = self._embedding_provider.embed(query)

        matches = []
        for memory in memories:
            try:
                embedding = self._memory_embedding(memory)
                score = cosine_similarity(query_embedding, embedding)
            except (ExternalCallError, ValueError, TypeError) as e:
                logger.warning(f"Skipping memory {memory.id} in semantic search: {e}")
                continue

            if score >= threshold:
                matches.append(SemanticMatch(
                    memory_id=memory.id,
                    score=score,
                    summary=memory.summary,
                ))

        return self._top(matches)

    def find_semantic_matches_by_keywords(
        self,
        query: str,
        memories: Sequence[ChatMemory],
        threshold: Optional[float] = None,
    ) -> List[SemanticMatch]:
        """Rank memories by Jaccard overlap between query and memory key terms."""
        if threshold is None:
            threshold = self.keyword_threshold

        query_terms = extract_key_terms(query, self.QUERY_TERMS)
        query_set = set(query_terms)

        matches = []
        for memory in memories:
            memory_set = set(memory.key_terms)
            union = query_set | memory_set
            if not union:
                continue

            matched = [term for term in query_terms if term in memory_set]
            score = len(matched) / len(union)

            if score >= threshold:
                matches.append(SemanticMatch(
                    memory_id=memory.id,
                    score=score,
                    summary=memory.summary,
                    matched_terms=matched,
                ))

        return self._top(matches)

    def _memory_embedding(self, memory: ChatMemory) -> List[float]:
        """Return the memory's embedding, computing and persisting it if needed."""
        if memory.embedding:
            return memory.embedding

        embedding = self._embedding_provider.embed(memory.summary)
        memory.embedding = embedding

        if self._store is not None:
            try:
                self._store.save_memory_embedding(memory.id, embedding)
            except ChatMemoryError as e:
                logger.warning(f"Could not persist embedding for memory {memory.id}: {e}")

        return embedding

    def _top(self, matches: List[SemanticMatch]) -> List[SemanticMatch]:
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:self.max_results]


class ContextInjector:
    """Turns similarity matches into context strings for a prompt builder."""

    def __init__(self, engine: SimilarityEngine, template: str = CONTEXT_TEMPLATE):
        self.engine = engine
        self.template = template

    def create_context_injection(
        self,
        query: str,
        memories: Sequence[ChatMemory],
        threshold: Optional[float] = None,
    ) -> ContextInjection:
        matches = self.engine.find_semantic_matches(query, memories, threshold)
        return ContextInjection(
            original_message=query,
            injected_context=[self.template.format(summary=m.summary) for m in matches],
            relevant_memories=matches,
        )
