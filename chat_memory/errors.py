"""
Exception hierarchy for the chat memory engine.
"""

from typing import Optional


class ChatMemoryError(Exception):
    """Base exception for chat memory errors."""
    pass


class ExternalCallError(ChatMemoryError):
    """Raised when an embedding or chat completion call fails."""
    pass


class SerializationError(ChatMemoryError):
    """Raised when cached or stored JSON cannot be decoded."""
    pass


class DimensionMismatchError(ChatMemoryError, ValueError):
    """Raised when two vectors of different length are compared."""

    def __init__(self, left: int, right: int):
        super().__init__(
            f"Vectors must have the same length (got {left} and {right})"
        )
        self.left = left
        self.right = right


class MigrationError(ChatMemoryError):
    """Raised when a schema migration or rollback cannot complete."""

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class StorageError(ChatMemoryError):
    """Raised when the primary memory store fails to read or write."""
    pass
