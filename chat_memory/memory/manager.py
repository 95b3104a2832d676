"""
Memory Manager - High-level interface for the chat memory system.

Tracks the current chat, keeps each chat's summary, tags and key terms
up to date as messages arrive, and retrieves context from earlier chats.
"""

import json
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from ..errors import ExternalCallError, SerializationError
from .analysis import ConversationAnalyzer
from .keyterms import extract_key_terms, extract_key_terms_from_messages
from .similarity import ContextInjector, SimilarityEngine
from .storage import MemoryStore
from .types import ChatBio, ChatMemory, ContextInjection, Message, MessageRole, new_id, utc_now


logger = logging.getLogger(__name__)


class ChatMemoryManager:
    """
    Session-level chat memory service.

    Example usage:
        store = MemoryStore()
        manager = ChatMemoryManager(store, ConversationAnalyzer(provider))

        manager.add_message(Message(role=MessageRole.USER, content="My Flask API returns 500"))
        context = manager.find_relevant_context("flask error handling")
    """

    DEFAULT_MAX_KEY_TERMS = 15
    SEARCH_TERMS = 5
    # Summaries are refreshed for every message in short chats
    ANALYZE_ALWAYS_UP_TO = 5
    ANALYZE_EVERY = 3

    def __init__(
        self,
        store: MemoryStore,
        analyzer: Optional[ConversationAnalyzer] = None,
        similarity: Optional[SimilarityEngine] = None,
        max_key_terms: int = DEFAULT_MAX_KEY_TERMS,
    ):
        """
        Initialize the memory manager.

        Args:
            store: Persistent memory store.
            analyzer: Summary/tag/title generator. Defaults to an analyzer
                without a model, which uses the local fallbacks.
            similarity: Similarity engine. Defaults to keyword matching.
            max_key_terms: Maximum key terms kept per chat.
        """
        self._store = store
        self._analyzer = analyzer or ConversationAnalyzer()
        self._similarity = similarity or SimilarityEngine(store=store)
        self._injector = ContextInjector(self._similarity)
        self.max_key_terms = max_key_terms
        self._current_chat_id: Optional[str] = None
        self._bio: Optional[ChatBio] = store.get_bio()

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def similarity(self) -> SimilarityEngine:
        return self._similarity

    @property
    def current_chat_id(self) -> Optional[str]:
        return self._current_chat_id

    # ========== Chats ==========

    def create_new_chat(self, first_message: str) -> str:
        """Create an empty chat titled after its first message and make it current."""
        memory = ChatMemory(title=self._analyzer.generate_chat_title(first_message))
        self._store.save_memory(memory)
        self._current_chat_id = memory.id
        logger.info(f"Created chat {memory.id}: {memory.title}")
        return memory.id

    def load_chat(self, chat_id: str) -> Optional[ChatMemory]:
        memory = self._store.get_memory(chat_id)
        if memory is not None:
            self._current_chat_id = chat_id
        return memory

    def get_all_chats(self) -> List[ChatMemory]:
        return self._store.get_all_memories()

    def delete_chat(self, chat_id: str) -> bool:
        deleted = self._store.delete_memory(chat_id)
        if self._current_chat_id == chat_id:
            self._current_chat_id = None
        return deleted

    def rename_chat(self, chat_id: str, title: str) -> bool:
        return self._store.update_memory_title(chat_id, title)

    # ========== Messages ==========

    def add_message(self, message: Message) -> str:
        """
        Add a message to the current chat, creating one if needed.

        The chat is re-analyzed when the message is from the user, when
        the chat is still short, or on every third message.

        Returns:
            ID of the chat the message was added to
        """
        if self._current_chat_id is None:
            self.create_new_chat(message.text)

        chat_id = self._current_chat_id
        message.chat_id = chat_id
        self._store.save_message(message)

        count = self._store.count_messages(chat_id)
        should_analyze = (
            message.role == MessageRole.USER
            or count <= self.ANALYZE_ALWAYS_UP_TO
            or count % self.ANALYZE_EVERY == 0
        )
        if should_analyze and count > 0:
            self._update_chat_analysis(chat_id, self._store.get_messages(chat_id))

        return chat_id

    def _update_chat_analysis(self, chat_id: str, messages: List[Message]) -> None:
        memory = self._store.get_memory(chat_id, include_messages=False)
        if memory is None:
            return

        try:
            memory.summary = self._analyzer.generate_summary(messages)
            memory.tags = self._analyzer.generate_tags(messages)
        except ExternalCallError as e:
            logger.error(f"Failed to update chat analysis for {chat_id}: {e}")
            return

        memory.key_terms = extract_key_terms_from_messages(messages, self.max_key_terms)
        memory.embedding = None
        now = utc_now()
        memory.updated_at = now
        memory.last_message_at = now
        self._store.save_memory(memory)
        logger.debug(f"Updated analysis for chat {chat_id}")

    # ========== Context & search ==========

    def get_context_injection(
        self,
        message: str,
        threshold: Optional[float] = None,
    ) -> ContextInjection:
        """Build context from every chat except the current one."""
        others = [m for m in self.get_all_chats() if m.id != self._current_chat_id]
        if not others:
            return ContextInjection(original_message=message)
        return self._injector.create_context_injection(message, others, threshold)

    def find_relevant_context(self, message: str) -> List[str]:
        """Context strings from earlier chats relevant to the message."""
        if self._current_chat_id is None:
            return []
        return self.get_context_injection(message).injected_context

    def search_chats(self, query: str) -> List[ChatMemory]:
        terms = extract_key_terms(query, self.SEARCH_TERMS)
        return self._store.search_memories_by_terms(terms)

    def get_chat_stats(self) -> Dict[str, Any]:
        """Chat count, message count and the ten most used tags."""
        chats = self.get_all_chats()
        tag_counts = Counter(tag for chat in chats for tag in chat.tags)
        return {
            "total_chats": len(chats),
            "total_messages": sum(len(chat.messages) for chat in chats),
            "most_used_tags": [tag for tag, _ in tag_counts.most_common(10)],
        }

    # ========== Import / export ==========

    def export_chat(self, chat_id: str) -> str:
        """
        Export a chat as JSON.

        Raises:
            KeyError: If the chat does not exist.
        """
        memory = self._store.get_memory(chat_id)
        if memory is None:
            raise KeyError(f"Chat not found: {chat_id}")
        return json.dumps(memory.to_dict(), indent=2)

    def import_chat(self, chat_data: str) -> str:
        """
        Import a chat exported with export_chat.

        The chat and its messages get new IDs, so importing the same
        export twice yields two chats.

        Raises:
            SerializationError: If the data is not a valid chat export.
        """
        try:
            memory = ChatMemory.from_dict(json.loads(chat_data))
        except SerializationError:
            raise
        except (ValueError, TypeError, AttributeError) as e:
            raise SerializationError(f"Invalid chat data format: {e}") from e

        memory.id = new_id()
        memory.key_terms = memory.key_terms[:self.max_key_terms]
        now = utc_now()
        memory.created_at = now
        memory.updated_at = now
        memory.last_message_at = now
        for message in memory.messages:
            message.id = new_id()
            message.chat_id = memory.id

        self._store.save_memory(memory)
        logger.info(f"Imported chat {memory.id} with {len(memory.messages)} messages")
        return memory.id

    # ========== Bio ==========

    def save_bio(self, name: str, content: str) -> ChatBio:
        bio = ChatBio(
            id=self._bio.id if self._bio else new_id(),
            name=name,
            content=content,
            created_at=self._bio.created_at if self._bio else utc_now(),
        )
        self._store.save_bio(bio)
        self._bio = bio
        return bio

    def get_bio(self) -> Optional[ChatBio]:
        return self._bio
