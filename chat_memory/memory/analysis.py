"""
Conversation analysis helpers.

Generates summaries, tags and titles for chats with a chat completion
model, degrading to local heuristics when the model is unavailable.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..cache import CacheService
from ..errors import ExternalCallError
from ..llm.base import LLMMessage, LLMProvider
from .keyterms import extract_key_terms, extract_key_terms_from_messages
from .types import Message, MessageRole, content_text


logger = logging.getLogger(__name__)


SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates concise summaries of conversations. "
    "Create a brief, informative summary (1-2 sentences) that captures the main "
    "topics and outcomes of the conversation."
)

TAGS_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates relevant tags for conversations. "
    "Generate 3-5 concise, lowercase tags that capture the main topics. "
    "Respond with only the tags separated by commas, no other text."
)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates concise, descriptive titles for "
    "conversations. Create a short title (3-6 words) that captures the main topic. "
    "Respond with only the title, no other text."
)

SUMMARY_UNAVAILABLE = "Conversation summary unavailable"

_ENTITY_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")


@dataclass
class ParsedMessage:
    """Lightweight structure extracted from a single message."""

    key_terms: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    intent: str = "general"


def detect_intent(text: str) -> str:
    """Classify a message as question, request, gratitude, apology or general."""
    lowered = text.lower()
    if "?" in lowered or any(w in lowered for w in ("how", "what", "why")):
        return "question"
    if any(w in lowered for w in ("please", "can you", "would you")):
        return "request"
    if any(w in lowered for w in ("thank", "appreciate")):
        return "gratitude"
    if any(w in lowered for w in ("sorry", "apologize")):
        return "apology"
    return "general"


def parse_message(message: Message) -> ParsedMessage:
    """Extract key terms, capitalised entities and intent from a message."""
    text = message.text
    entities = [e for e in _ENTITY_PATTERN.findall(text) if 2 < len(e) < 30]
    return ParsedMessage(
        key_terms=extract_key_terms(text, 10),
        entities=entities[:5],
        intent=detect_intent(text),
    )


def _transcript(messages: Sequence[Message]) -> str:
    lines = []
    for message in messages:
        speaker = "User" if message.role == MessageRole.USER else "Assistant"
        lines.append(f"{speaker}: {content_text(message.content, image_placeholder='[Image]')}")
    return "\n".join(lines)


class ConversationAnalyzer:
    """
    Derives summaries, tags and titles for chats.

    Every operation falls back to a local heuristic when the completion
    call fails, so analysis never raises.
    """

    SUMMARY_WINDOW = 10
    TAGS_WINDOW = 6
    MAX_TAGS = 5
    MAX_TAG_LENGTH = 19
    MAX_TITLE_LENGTH = 50

    CACHE_TAG = "analysis"

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        model: Optional[str] = None,
        cache: Optional[CacheService] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            provider: Chat completion provider. Without one, only the
                fallbacks are used.
            model: Model override passed to every completion call.
            cache: Optional cache for completion results.
        """
        self.provider = provider
        self.model = model
        self.cache = cache

    def _cache_key(self, system_prompt: str, user_prompt: str) -> str:
        key_data = json.dumps([self.model, system_prompt, user_prompt])
        return f"{self.CACHE_TAG}:{hashlib.sha256(key_data.encode()).hexdigest()}"

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        if self.provider is None:
            raise ExternalCallError("No LLM provider configured")

        cache_key = self._cache_key(system_prompt, user_prompt)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if isinstance(cached, str):
                return cached

        kwargs = {"model": self.model} if self.model else {}
        response = self.provider.complete(
            [
                LLMMessage(role=MessageRole.SYSTEM, content=system_prompt),
                LLMMessage(role=MessageRole.USER, content=user_prompt),
            ],
            **kwargs,
        )
        content = (response.content or "").strip()
        if not content:
            raise ExternalCallError("LLM returned an empty response")

        if self.cache is not None:
            self.cache.set(cache_key, content, tags=[self.CACHE_TAG])
        return content

    def generate_summary(self, messages: Sequence[Message]) -> str:
        """Summarize the last messages of a conversation in 1-2 sentences."""
        if not messages:
            return ""

        transcript = _transcript(messages[-self.SUMMARY_WINDOW:])
        try:
            return self._complete(
                SUMMARY_SYSTEM_PROMPT,
                f"Please summarize this conversation:\n\n{transcript}",
            )
        except ExternalCallError as e:
            logger.warning(f"Failed to generate summary: {e}")

        first_user = next((m for m in messages if m.role == MessageRole.USER), None)
        if first_user is None:
            return SUMMARY_UNAVAILABLE
        text = first_user.text
        return text[:100] + ("..." if len(text) > 100 else "")

    def generate_tags(self, messages: Sequence[Message]) -> List[str]:
        """Generate up to five lower-case topic tags."""
        if not messages:
            return []

        transcript = _transcript(messages[-self.TAGS_WINDOW:])
        try:
            response = self._complete(
                TAGS_SYSTEM_PROMPT,
                f"Generate tags for this conversation:\n\n{transcript}",
            )
        except ExternalCallError as e:
            logger.warning(f"Failed to generate tags: {e}")
            return extract_key_terms_from_messages(messages, self.MAX_TAGS)

        tags = [tag.strip().lower() for tag in response.split(",")]
        tags = [tag for tag in tags if 0 < len(tag) <= self.MAX_TAG_LENGTH]
        return tags[:self.MAX_TAGS]

    def generate_chat_title(self, first_message: str) -> str:
        """Generate a short title from the opening message of a chat."""
        excerpt = first_message[:200] + ("..." if len(first_message) > 200 else "")
        try:
            title = self._complete(
                TITLE_SYSTEM_PROMPT,
                f'Create a title for a conversation that starts with: "{excerpt}"',
            )
            return title[:self.MAX_TITLE_LENGTH]
        except ExternalCallError as e:
            logger.warning(f"Failed to generate title: {e}")

        title = " ".join(first_message.split(" ")[:6])[:self.MAX_TITLE_LENGTH]
        if len(first_message) > self.MAX_TITLE_LENGTH:
            title += "..."
        return title
