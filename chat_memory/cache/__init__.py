"""
Generic caching for the chat memory engine.

Provides a size and TTL bounded cache with tag lookup, backed by an
in-memory tier and an optional on-disk tier.
"""

from .persistent import DiskTier, PersistentRecord
from .service import PERSISTENT_TAG, CacheEntry, CacheService, CacheStats


__all__ = [
    "CacheEntry",
    "CacheService",
    "CacheStats",
    "DiskTier",
    "PersistentRecord",
    "PERSISTENT_TAG",
]
