"""
Generic Cache - Size and TTL bounded key/value cache.

Memoizes arbitrary JSON-compatible data with tag lookup and a
two-tier (memory + disk) backing. Independent of the embedding cache.
"""

import dataclasses
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..config import CacheSettings
from .persistent import DiskTier, PersistentRecord


logger = logging.getLogger(__name__)


PERSISTENT_TAG = "persistent"


def format_bytes(size: int) -> str:
    """Format a byte count for log output."""
    for unit in ("Bytes", "KB", "MB"):
        if size < 1024:
            return f"{round(size, 2)} {unit}"
        size /= 1024
    return f"{round(size, 2)} GB"


@dataclass
class CacheEntry:
    """A cached value with its expiry and size."""

    key: str
    data: Any
    timestamp: float
    expires_at: float
    size: int
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        """Check if the cache entry has expired."""
        return now > self.expires_at

    def to_record(self) -> PersistentRecord:
        return PersistentRecord(
            key=self.key,
            data=self.data,
            timestamp=self.timestamp,
            expires_at=self.expires_at,
            size=self.size,
            tags=self.tags,
            metadata=self.metadata,
        )

    @classmethod
    def from_record(cls, record: PersistentRecord) -> "CacheEntry":
        return cls(
            key=record.key,
            data=record.data,
            timestamp=record.timestamp,
            expires_at=record.expires_at,
            size=record.size,
            tags=list(record.tags),
            metadata=dict(record.metadata),
        )


@dataclass
class CacheStats:
    """Cache statistics over both tiers. Rates are percentages."""

    total_entries: int = 0
    total_size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None
    entries_by_tag: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


class CacheService:
    """
    Two-tier cache with size, count and TTL bounds.

    Features:
    - Eviction of the soonest-to-expire entries when the size bound is hit
    - TTL-based expiration
    - Large or "persistent"-tagged entries written through to disk
    - Promotion of disk entries into memory on read
    - Periodic background sweep on a daemon thread
    - Thread-safe operations

    Storage and serialization errors are logged and reported as a miss
    or no-op; they never propagate.

    Example:
        >>> cache = CacheService(CacheSettings(default_ttl=60))
        >>> cache.set("user:42", {"name": "Ada"}, tags=["users"])
        >>> cache.get("user:42")
        {'name': 'Ada'}
        >>> cache.close()
    """

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        disk_tier: Optional[DiskTier] = None,
        clock: Callable[[], float] = time.time,
        start_cleanup: bool = True,
    ):
        """
        Initialize the cache service.

        Args:
            settings: Size, count and time limits.
            disk_tier: Persistent tier. Defaults to one in
                ``settings.cache_dir`` when that is set, else memory only.
            clock: Returns the current time in epoch seconds.
            start_cleanup: Whether to start the background sweep.
        """
        self._settings = settings or CacheSettings()
        if disk_tier is None and self._settings.cache_dir:
            disk_tier = DiskTier(self._settings.cache_dir)
        self._disk = disk_tier
        self._clock = clock

        self._memory: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

        self._stop_event = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        if start_cleanup:
            self._start_cleanup_thread()

    # ========== Core operations ==========

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Store data in the cache.

        Args:
            key: Cache key.
            data: JSON-serializable value.
            ttl: Time-to-live in seconds. Defaults to the configured TTL.
            tags: Tags for get_by_tag; "persistent" forces a disk copy.
            metadata: Free-form metadata kept with the entry.

        Returns:
            True if the entry was stored.
        """
        try:
            serialized = json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Cache set failed for {key!r}: {e}")
            return False

        size = len(serialized.encode("utf-8"))
        now = self._clock()
        entry = CacheEntry(
            key=key,
            # Stored in decoded form so memory and disk reads agree
            data=json.loads(serialized),
            timestamp=now,
            expires_at=now + (ttl if ttl is not None else self._settings.default_ttl),
            size=size,
            tags=list(tags or []),
            metadata=dict(metadata or {}),
        )

        with self._lock:
            if size > self._settings.max_size:
                logger.warning(
                    f"Cache entry {key!r} ({format_bytes(size)}) exceeds the cache size limit"
                )
                # The previous value must not outlive a failed replace
                self._remove(key)
                return False

            self._memory.pop(key, None)
            self.ensure_space(size)
            self._memory[key] = entry
            self._sets += 1

            if self._disk is not None:
                if size > self._settings.persist_threshold or PERSISTENT_TAG in entry.tags:
                    self._write_disk(entry)
                else:
                    self._disk.delete(key)

        logger.debug(f"Cache SET: {key} ({format_bytes(size)})")
        return True

    def get(self, key: str) -> Optional[Any]:
        """
        Get data from the cache.

        Checks memory first, then the persistent tier. Expired entries
        are deleted and reported as a miss.
        """
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
                return None

            self._hits += 1

        logger.debug(f"Cache HIT: {key}")
        return entry.data

    def has(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        with self._lock:
            return self._lookup(key) is not None

    def delete(self, key: str) -> bool:
        """Delete an entry from both tiers."""
        with self._lock:
            removed = self._remove(key)
            if removed:
                self._deletes += 1

        if removed:
            logger.debug(f"Cache DELETE: {key}")
        return removed

    def clear(self) -> None:
        """Clear all cache entries and reset statistics."""
        with self._lock:
            self._memory.clear()
            if self._disk is not None:
                self._disk.clear()
            self._hits = self._misses = self._sets = self._deletes = 0
        logger.info("Cache cleared")

    def get_by_tag(self, tag: str) -> Dict[str, Any]:
        """Unexpired entries carrying a tag, keyed by cache key."""
        now = self._clock()
        results: Dict[str, Any] = {}

        with self._lock:
            for key, entry in self._memory.items():
                if tag in entry.tags and not entry.is_expired(now):
                    results[key] = entry.data

            for record in self._disk_records():
                if record.key in results or record.key in self._memory:
                    continue
                if tag in record.tags and now <= record.expires_at:
                    results[record.key] = record.data

        return results

    def get_stats(self) -> CacheStats:
        """
        Get cache statistics.

        Entries present in both tiers are counted once.
        """
        with self._lock:
            entries = list(self._memory.values())
            entries.extend(
                CacheEntry.from_record(record)
                for record in self._disk_records()
                if record.key not in self._memory
            )

            stats = CacheStats(
                total_entries=len(entries),
                total_size=sum(e.size for e in entries),
                hits=self._hits,
                misses=self._misses,
            )

            total_requests = self._hits + self._misses
            if total_requests > 0:
                stats.hit_rate = round(self._hits / total_requests * 100, 2)
                stats.miss_rate = round(self._misses / total_requests * 100, 2)

        if entries:
            stats.oldest_entry = min(e.timestamp for e in entries)
            stats.newest_entry = max(e.timestamp for e in entries)

        for entry in entries:
            for tag in entry.tags:
                stats.entries_by_tag[tag] = stats.entries_by_tag.get(tag, 0) + 1

        return stats

    # ========== Space management ==========

    def ensure_space(self, required_size: int) -> int:
        """
        Make room for an entry of required_size bytes.

        Evicts memory entries closest to expiry first until the new
        entry fits within the size limit.

        Returns:
            Number of entries evicted.
        """
        with self._lock:
            current_size = self._current_size()
            if current_size + required_size <= self._settings.max_size:
                return 0

            freed = 0
            evicted = 0
            for entry in sorted(self._memory.values(), key=lambda e: e.expires_at):
                self._remove(entry.key)
                freed += entry.size
                evicted += 1
                if current_size - freed + required_size <= self._settings.max_size:
                    break

        logger.info(f"Cache cleanup: freed {format_bytes(freed)}, deleted {evicted} entries")
        return evicted

    def cleanup(self) -> int:
        """
        Remove expired entries, then trim to the entry limit.

        Trimming deletes the oldest entries by creation time.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._memory.items() if entry.is_expired(now)]
            expired.extend(
                record.key for record in self._disk_records()
                if now > record.expires_at and record.key not in self._memory
            )
            for key in expired:
                self._remove(key)

            if expired:
                logger.info(f"Cache cleanup: removed {len(expired)} expired entries")

            excess = len(self._memory) - self._settings.max_entries
            trimmed = 0
            if excess > 0:
                oldest = sorted(self._memory.values(), key=lambda e: e.timestamp)[:excess]
                for entry in oldest:
                    self._remove(entry.key)
                    trimmed += 1
                logger.info(f"Cache cleanup: removed {trimmed} entries due to entry limit")

        return len(expired) + trimmed

    # ========== Configuration ==========

    def configure(self, **changes: Any) -> CacheSettings:
        """
        Update cache settings.

        Restarts the background sweep so a new interval takes effect.

        Raises:
            ValueError: If a setting name is unknown.
        """
        known = {f.name for f in dataclasses.fields(CacheSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown cache settings: {sorted(unknown)}")

        with self._lock:
            self._settings = dataclasses.replace(self._settings, **changes)

        if self._cleanup_thread is not None:
            self._stop_cleanup_thread()
            self._start_cleanup_thread()

        return self.get_config()

    def get_config(self) -> CacheSettings:
        """Get a copy of the current settings."""
        with self._lock:
            return dataclasses.replace(self._settings)

    def close(self) -> None:
        """Stop the background sweep and drop the memory tier."""
        self._stop_cleanup_thread()
        with self._lock:
            self._memory.clear()

    # ========== Internals ==========

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        """Find an unexpired entry, promoting it from disk if needed."""
        now = self._clock()
        entry = self._memory.get(key)

        if entry is None and self._disk is not None:
            record = self._disk.read(key)
            if record is None:
                return None
            entry = CacheEntry.from_record(record)
            if entry.is_expired(now):
                self._disk.delete(key)
                return None
            self.ensure_space(entry.size)
            self._memory[key] = entry
            logger.debug(f"Cache PROMOTE: {key}")

        if entry is None:
            return None

        if entry.is_expired(now):
            self._remove(key)
            return None

        return entry

    def _remove(self, key: str) -> bool:
        removed = self._memory.pop(key, None) is not None
        if self._disk is not None and self._disk.delete(key):
            removed = True
        return removed

    def _current_size(self) -> int:
        return sum(entry.size for entry in self._memory.values())

    def _write_disk(self, entry: CacheEntry) -> None:
        try:
            record = entry.to_record()
        except ValueError as e:
            logger.warning(f"Cache entry {entry.key!r} not persisted: {e}")
            return
        self._disk.write(record)

    def _disk_records(self) -> List[PersistentRecord]:
        if self._disk is None:
            return []
        return self._disk.records()

    def _start_cleanup_thread(self) -> None:
        self._stop_event = threading.Event()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            args=(self._stop_event, self._settings.cleanup_interval),
            name="cache-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def _stop_cleanup_thread(self) -> None:
        thread = self._cleanup_thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=5)
        self._cleanup_thread = None

    def _cleanup_loop(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.wait(interval):
            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Cache cleanup failed: {e}")
