"""
Type definitions for the chat memory system.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ..errors import SerializationError
from ..llm.base import MessageRole


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new random identifier."""
    return str(uuid.uuid4())


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive
    values are assumed to be UTC.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed datetime or None
    """
    if value is None:
        return None
    if isinstance(value, str):
        # Handle 'Z' suffix for UTC
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    return None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO-8601 string."""
    return value.isoformat() if value else None


@dataclass
class TextPart:
    """A text segment of a multipart message."""

    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ImagePart:
    """An image reference inside a multipart message."""

    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentPart = Union[TextPart, ImagePart]
MessageContent = Union[str, List[ContentPart]]


def content_part_from_dict(data: Dict[str, Any]) -> ContentPart:
    """
    Build a content part from its serialized form.

    Raises:
        SerializationError: If the part type is unknown or malformed.
    """
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=str(data.get("text", "")))
    if part_type == "image_url":
        image = data.get("image_url")
        url = image.get("url") if isinstance(image, dict) else image
        if not isinstance(url, str):
            raise SerializationError("image_url part without a url")
        return ImagePart(url=url)
    raise SerializationError(f"Unknown content part type: {part_type!r}")


def serialize_content(content: MessageContent) -> Union[str, List[Dict[str, Any]]]:
    """Convert message content to a JSON-compatible value."""
    if isinstance(content, str):
        return content
    return [part.to_dict() for part in content]


def deserialize_content(value: Any) -> MessageContent:
    """Convert a JSON-compatible value back to message content."""
    if isinstance(value, list):
        return [content_part_from_dict(part) for part in value]
    if value is None:
        return ""
    return str(value)


def content_text(content: MessageContent, image_placeholder: Optional[str] = None) -> str:
    """
    Flatten message content to plain text.

    Args:
        content: String or multipart content
        image_placeholder: Text to emit for image parts. Images are
            dropped when None.
    """
    if isinstance(content, str):
        return content

    pieces = []
    for part in content:
        if isinstance(part, TextPart):
            pieces.append(part.text)
        elif isinstance(part, ImagePart):
            if image_placeholder is not None:
                pieces.append(image_placeholder)
        else:
            raise TypeError(f"Unsupported content part: {type(part).__name__}")
    return " ".join(pieces)


def parse_embedding(value: Any) -> Optional[List[float]]:
    """
    Validate a stored embedding vector.

    Returns:
        The vector as floats, or None unless value is a non-empty list
        of real numbers.
    """
    if not isinstance(value, list) or not value:
        return None
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            return None
    return [float(item) for item in value]


@dataclass
class Message:
    """
    A single chat message.

    Attributes:
        role: Who sent the message
        content: Plain text or a list of content parts
        chat_id: ID of the chat memory this message belongs to
        thinking: Optional reasoning trace returned by the model
        model: Optional name of the model that produced the message
    """

    role: MessageRole
    content: MessageContent
    id: str = field(default_factory=new_id)
    chat_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    thinking: Optional[str] = None
    model: Optional[str] = None

    @property
    def text(self) -> str:
        """Text content of the message, ignoring images."""
        return content_text(self.content)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "role": self.role.value,
            "content": serialize_content(self.content),
            "timestamp": format_datetime(self.timestamp),
            "thinking": self.thinking,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create from dictionary."""
        try:
            role = MessageRole(data.get("role", "user"))
        except ValueError as e:
            raise SerializationError(f"Invalid message role: {data.get('role')!r}") from e

        return cls(
            id=data.get("id") or new_id(),
            chat_id=data.get("chat_id"),
            role=role,
            content=deserialize_content(data.get("content")),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
            thinking=data.get("thinking"),
            model=data.get("model"),
        )


@dataclass
class ChatMemory:
    """
    A stored conversation together with its derived artifacts.

    Attributes:
        title: Human readable title
        messages: Messages ordered by timestamp
        tags: Topic tags
        summary: Short summary used for semantic matching
        key_terms: Extracted key terms used for keyword matching
        embedding: Embedding of the summary, computed on first search
    """

    title: str
    id: str = field(default_factory=new_id)
    messages: List[Message] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    summary: str = ""
    key_terms: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None

    def __post_init__(self):
        """Initialize defaults after creation."""
        if self.updated_at is None:
            self.updated_at = self.created_at
        if self.last_message_at is None:
            self.last_message_at = self.created_at
        self.messages = sorted(self.messages, key=lambda m: m.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "tags": list(self.tags),
            "summary": self.summary,
            "key_terms": list(self.key_terms),
            "embedding": self.embedding,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "last_message_at": format_datetime(self.last_message_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMemory":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise SerializationError("Chat memory data must be an object")

        return cls(
            id=data.get("id") or new_id(),
            title=data.get("title", ""),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            tags=list(data.get("tags", [])),
            summary=data.get("summary", ""),
            key_terms=list(data.get("key_terms", [])),
            embedding=parse_embedding(data.get("embedding")),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")),
            last_message_at=parse_datetime(data.get("last_message_at")),
        )


@dataclass
class ChatBio:
    """Free-form information about the user, injected into every chat."""

    name: str
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class SemanticMatch:
    """
    A memory that matched a query.

    Attributes:
        memory_id: ID of the matching chat memory
        score: Cosine similarity (embedding path) or Jaccard index (keyword path)
        matched_terms: Shared key terms; always empty for embedding matches
        summary: Summary of the matching memory
    """

    memory_id: str
    score: float
    summary: str
    matched_terms: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory_id": self.memory_id,
            "score": self.score,
            "matched_terms": list(self.matched_terms),
            "summary": self.summary,
        }


@dataclass
class ContextInjection:
    """Context assembled from prior conversations for a new message."""

    original_message: str
    injected_context: List[str] = field(default_factory=list)
    relevant_memories: List[SemanticMatch] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_message": self.original_message,
            "injected_context": list(self.injected_context),
            "relevant_memories": [m.to_dict() for m in self.relevant_memories],
        }


@dataclass
class GistRecord:
    """A chat exported to a GitHub gist."""

    chat_id: str
    gist_id: str
    gist_url: str
    title: str
    content: List[Dict[str, Any]] = field(default_factory=list)
    description: Optional[str] = None
    is_public: bool = False
    tags: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class TokenUsageRecord:
    """Token consumption of one model call within a chat."""

    chat_id: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class BranchRecord:
    """A repository branch created for a chat in code mode."""

    chat_id: str
    repository: str
    branch_name: str
    status: str = "active"
    pr_url: Optional[str] = None
    id: str = field(default_factory=new_id)
    last_activity: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class CodespaceRecord:
    """A tracked GitHub codespace."""

    repository: str
    codespace_id: str
    display_name: str
    state: str
    web_url: str
    id: str = field(default_factory=new_id)
    last_activity: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class StoreStats:
    """Statistics about the memory store."""

    total_memories: int = 0
    total_messages: int = 0
    schema_version: int = 0
    total_size_bytes: int = 0
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_memories": self.total_memories,
            "total_messages": self.total_messages,
            "schema_version": self.schema_version,
            "total_size_bytes": self.total_size_bytes,
            "oldest_memory": format_datetime(self.oldest_memory),
            "newest_memory": format_datetime(self.newest_memory),
        }
