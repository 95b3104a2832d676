"""
Persistent cache tier.

Stores one JSON file per cache key. Records are validated on read;
anything that fails to parse or validate is deleted and treated as
absent.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError


logger = logging.getLogger(__name__)


class PersistentRecord(BaseModel):
    """On-disk form of a cache entry."""

    key: str = Field(..., min_length=1, description="Cache key")
    data: Any = Field(default=None, description="JSON-compatible payload")
    timestamp: float = Field(..., ge=0, description="Creation time (epoch seconds)")
    expires_at: float = Field(..., ge=0, description="Expiry time (epoch seconds)")
    size: int = Field(..., ge=0, description="Size of the serialized payload in bytes")
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DiskTier:
    """
    File-backed secondary cache tier.

    I/O errors are logged and reported as a miss or no-op; they never
    propagate to callers.

    Example:
        >>> tier = DiskTier("/tmp/chat_memory_cache")
        >>> tier.write(record)
        >>> tier.read("user:42")
    """

    SUFFIX = ".json"

    def __init__(self, cache_dir: str):
        """
        Initialize the disk tier.

        Args:
            cache_dir: Directory to store cache files.
        """
        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}{self.SUFFIX}"

    def _load(self, path: Path) -> Optional[PersistentRecord]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            logger.warning(f"Discarding undecodable cache file {path.name}")
            self._unlink(path)
            return None
        except OSError as e:
            logger.warning(f"Error reading cache file {path.name}: {e}")
            return None

        try:
            return PersistentRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding invalid cache file {path.name}: {e.error_count()} errors")
            self._unlink(path)
            return None

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Error deleting cache file {path.name}: {e}")
            return False

    def write(self, record: PersistentRecord) -> bool:
        """Persist a record, replacing any previous one for the key."""
        path = self._path(record.key)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(record.model_dump_json(), encoding="utf-8")
            tmp_path.replace(path)
            return True
        except OSError as e:
            logger.warning(f"Error saving cache entry {record.key!r}: {e}")
            return False

    def read(self, key: str) -> Optional[PersistentRecord]:
        path = self._path(key)
        record = self._load(path)
        if record is not None and record.key != key:
            logger.warning(f"Discarding cache file {path.name}: key mismatch")
            self._unlink(path)
            return None
        return record

    def delete(self, key: str) -> bool:
        return self._unlink(self._path(key))

    def records(self) -> List[PersistentRecord]:
        """All valid records on disk."""
        try:
            paths = sorted(self.cache_dir.glob(f"*{self.SUFFIX}"))
        except OSError as e:
            logger.warning(f"Error listing cache directory: {e}")
            return []

        records = []
        for path in paths:
            record = self._load(path)
            if record is not None:
                records.append(record)
        return records

    def clear(self) -> int:
        """Delete every record. Returns the number of files removed."""
        removed = 0
        try:
            paths = list(self.cache_dir.glob(f"*{self.SUFFIX}"))
        except OSError as e:
            logger.warning(f"Error listing cache directory: {e}")
            return 0

        for path in paths:
            if self._unlink(path):
                removed += 1
        return removed
