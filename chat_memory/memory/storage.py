"""
SQLite storage for chat memories.

Persists conversations, their messages, user settings and the auxiliary
tables owned by collaborators (gists, token usage, branches,
codespaces). The schema is maintained by the migration runner.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..errors import SerializationError, StorageError
from .migrations import MigrationRunner
from .types import (
    BranchRecord,
    ChatBio,
    ChatMemory,
    CodespaceRecord,
    GistRecord,
    Message,
    MessageRole,
    StoreStats,
    TokenUsageRecord,
    deserialize_content,
    parse_datetime,
    parse_embedding,
    serialize_content,
    utc_now,
)


logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Store datetimes as UTC ISO strings so they sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MemoryStore:
    """
    SQLite-based chat memory store.

    Thread-safe with one connection per thread. Migrations run when the
    store is opened; a store that fails to migrate refuses to open.

    Example:
        >>> store = MemoryStore(db_path="/tmp/chat_memory.db")
        >>> store.save_memory(ChatMemory(title="Debugging"))
        >>> store.search_memories_by_terms(["python"])
    """

    # Default database location
    DEFAULT_DB_PATH = ".chat_memory/chat_memory.db"

    def __init__(
        self,
        db_path: Optional[str] = None,
        migrator: Optional[MigrationRunner] = None,
        auto_migrate: bool = True,
    ):
        """
        Initialize SQLite storage.

        Args:
            db_path: Path to the database file. If None, uses default.
            migrator: Migration runner. Defaults to the built-in migrations.
            auto_migrate: Whether to apply pending migrations on open.

        Raises:
            MigrationError: If the schema cannot be brought up to date.
        """
        if db_path is None:
            db_path = str(Path.home() / self.DEFAULT_DB_PATH)

        self.db_path = db_path
        self.migrator = migrator or MigrationRunner()
        self._local = threading.local()

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        if auto_migrate:
            self.migrate()

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "conn", None) is None:
            # Autocommit mode; transactions are opened explicitly
            conn = sqlite3.connect(self.db_path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for write transactions."""
        cursor = self._conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"Memory store write failed: {e}") from e
        except Exception:
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Memory store read failed: {e}") from e

    def _load_json(self, raw: Optional[str], default: Any, what: str) -> Any:
        """Decode a JSON column, treating corrupt values as absent."""
        if raw is None or raw == "":
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding corrupt {what} value in memory store")
            return default

    # ========== Schema ==========

    def migrate(self) -> List[int]:
        """Apply pending schema migrations."""
        return self.migrator.migrate(self._conn)

    def rollback(self, target_version: int) -> List[int]:
        """Revert schema migrations above target_version."""
        return self.migrator.rollback(self._conn, target_version)

    @property
    def schema_version(self) -> int:
        return self.migrator.current_version(self._conn)

    def migration_status(self) -> List[Dict[str, Any]]:
        return self.migrator.status(self._conn)

    # ========== Memories ==========

    def save_memory(self, memory: ChatMemory) -> str:
        """
        Insert or update a chat memory together with its messages.

        A stored embedding is kept when neither the summary nor the
        embedding changed, and cleared when the summary changed.
        Key terms are stored as given; ChatMemoryManager caps their number.

        Returns:
            The memory ID
        """
        embedding = json.dumps(memory.embedding) if memory.embedding else None

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO memories (
                    id, title, tags, summary, key_terms, embedding,
                    created_at, updated_at, last_message_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    tags = excluded.tags,
                    key_terms = excluded.key_terms,
                    embedding = CASE
                        WHEN excluded.embedding IS NOT NULL THEN excluded.embedding
                        WHEN memories.summary = excluded.summary THEN memories.embedding
                        ELSE NULL
                    END,
                    summary = excluded.summary,
                    updated_at = excluded.updated_at,
                    last_message_at = excluded.last_message_at
            """, (
                memory.id,
                memory.title,
                json.dumps(memory.tags),
                memory.summary,
                json.dumps(memory.key_terms),
                embedding,
                _ts(memory.created_at),
                _ts(memory.updated_at),
                _ts(memory.last_message_at),
            ))

            for message in memory.messages:
                message.chat_id = memory.id
                self._upsert_message(cursor, message)

        logger.debug(f"Saved memory {memory.id} with {len(memory.messages)} messages")
        return memory.id

    def get_memory(self, memory_id: str, include_messages: bool = True) -> Optional[ChatMemory]:
        """Retrieve a chat memory by ID."""
        rows = self._query("SELECT * FROM memories WHERE id = ?", (memory_id,))
        if not rows:
            return None
        return self._row_to_memory(rows[0], include_messages)

    def get_all_memories(self, include_messages: bool = True) -> List[ChatMemory]:
        """All chat memories, most recently active first."""
        rows = self._query("SELECT * FROM memories ORDER BY last_message_at DESC")
        return [self._row_to_memory(row, include_messages) for row in rows]

    def delete_memory(self, memory_id: str) -> bool:
        """
        Delete a chat memory.

        Messages, gists, token usage and branches of the chat are removed
        by cascade.
        """
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted memory {memory_id}")
        return deleted

    def update_memory_title(self, memory_id: str, title: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute(
                "UPDATE memories SET title = ?, updated_at = ? WHERE id = ?",
                (title, _ts(utc_now()), memory_id),
            )
            return cursor.rowcount > 0

    def save_memory_embedding(self, memory_id: str, embedding: List[float]) -> bool:
        """Persist the summary embedding of a memory."""
        with self._transaction() as cursor:
            cursor.execute(
                "UPDATE memories SET embedding = ? WHERE id = ?",
                (json.dumps(embedding), memory_id),
            )
            return cursor.rowcount > 0

    def search_memories_by_terms(self, terms: Sequence[str]) -> List[ChatMemory]:
        """
        Find memories whose key terms contain any of the given terms.

        This is a substring pre-filter over the serialized key terms, not
        a ranking; use the similarity engine to score the results.
        """
        terms = [t for t in terms if t]
        if not terms:
            return []

        conditions = " OR ".join("key_terms LIKE ? ESCAPE '\\'" for _ in terms)
        params = [f"%{_escape_like(term)}%" for term in terms]
        rows = self._query(
            f"SELECT * FROM memories WHERE {conditions} ORDER BY last_message_at DESC",
            params,
        )
        return [self._row_to_memory(row, include_messages=True) for row in rows]

    def _row_to_memory(self, row: sqlite3.Row, include_messages: bool) -> ChatMemory:
        """Convert a database row to a ChatMemory."""
        raw_embedding = self._load_json(row["embedding"], None, "embedding")
        embedding = parse_embedding(raw_embedding)
        if raw_embedding is not None and embedding is None:
            logger.warning(f"Discarding malformed embedding for memory {row['id']}")

        return ChatMemory(
            id=row["id"],
            title=row["title"],
            messages=self.get_messages(row["id"]) if include_messages else [],
            tags=self._load_json(row["tags"], [], "tags"),
            summary=row["summary"],
            key_terms=self._load_json(row["key_terms"], [], "key_terms"),
            embedding=embedding,
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            last_message_at=parse_datetime(row["last_message_at"]),
        )

    # ========== Messages ==========

    def save_message(self, message: Message) -> str:
        """
        Insert or update a message.

        Raises:
            ValueError: If the message has no chat_id.
            StorageError: If the chat does not exist.
        """
        if not message.chat_id:
            raise ValueError("Message must belong to a chat (chat_id is empty)")

        with self._transaction() as cursor:
            self._upsert_message(cursor, message)
        return message.id

    def _upsert_message(self, cursor: sqlite3.Cursor, message: Message) -> None:
        content = serialize_content(message.content)
        if not isinstance(content, str):
            content = json.dumps(content)

        cursor.execute("""
            INSERT INTO messages (id, chat_id, role, content, timestamp, thinking, model)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                chat_id = excluded.chat_id,
                role = excluded.role,
                content = excluded.content,
                timestamp = excluded.timestamp,
                thinking = excluded.thinking,
                model = excluded.model
        """, (
            message.id,
            message.chat_id,
            message.role.value,
            content,
            _ts(message.timestamp),
            message.thinking,
            message.model,
        ))

    def get_messages(self, chat_id: str) -> List[Message]:
        """Messages of a chat, oldest first."""
        rows = self._query(
            "SELECT * FROM messages WHERE chat_id = ? ORDER BY timestamp ASC",
            (chat_id,),
        )
        return [self._row_to_message(row) for row in rows]

    def count_messages(self, chat_id: str) -> int:
        rows = self._query("SELECT COUNT(*) AS count FROM messages WHERE chat_id = ?", (chat_id,))
        return rows[0]["count"]

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        raw = row["content"]
        content: Any = raw
        # Multipart content is stored as a JSON array
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list) and parsed:
                    content = deserialize_content(parsed)
            except (ValueError, SerializationError, AttributeError):
                content = raw

        return Message(
            id=row["id"],
            chat_id=row["chat_id"],
            role=MessageRole(row["role"]),
            content=content,
            timestamp=parse_datetime(row["timestamp"]),
            thinking=row["thinking"],
            model=row["model"],
        )

    # ========== Bio ==========

    def save_bio(self, bio: ChatBio) -> None:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO bio (id, name, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    content = excluded.content,
                    updated_at = excluded.updated_at
            """, (bio.id, bio.name, bio.content, _ts(bio.created_at), _ts(bio.updated_at)))

    def get_bio(self) -> Optional[ChatBio]:
        rows = self._query("SELECT * FROM bio ORDER BY updated_at DESC LIMIT 1")
        if not rows:
            return None
        row = rows[0]
        return ChatBio(
            id=row["id"],
            name=row["name"],
            content=row["content"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )

    # ========== Settings ==========

    def set_setting(self, key: str, value: Any) -> None:
        """
        Store a setting.

        Strings, numbers and booleans keep their type; anything else is
        stored as JSON.
        """
        if isinstance(value, bool):
            value_type, raw = "boolean", "true" if value else "false"
        elif isinstance(value, (int, float)):
            value_type, raw = "number", json.dumps(value)
        elif isinstance(value, str):
            value_type, raw = "string", value
        else:
            try:
                value_type, raw = "json", json.dumps(value)
            except (TypeError, ValueError) as e:
                raise SerializationError(f"Setting {key!r} is not JSON serializable") from e

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO settings (key, value, type, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    type = excluded.type,
                    updated_at = excluded.updated_at
            """, (key, raw, value_type, _ts(utc_now())))

    def get_setting(self, key: str, default: Any = None) -> Any:
        rows = self._query("SELECT value, type FROM settings WHERE key = ?", (key,))
        if not rows:
            return default
        return self._decode_setting(key, rows[0]["value"], rows[0]["type"], default)

    def get_all_settings(self) -> Dict[str, Any]:
        rows = self._query("SELECT key, value, type FROM settings ORDER BY key")
        return {
            row["key"]: self._decode_setting(row["key"], row["value"], row["type"], None)
            for row in rows
        }

    def delete_setting(self, key: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM settings WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def _decode_setting(self, key: str, raw: str, value_type: str, default: Any) -> Any:
        if value_type == "string":
            return raw
        if value_type == "boolean":
            return raw == "true"
        if value_type in ("number", "json"):
            return self._load_json(raw, default, f"setting {key!r}")
        logger.warning(f"Unknown type {value_type!r} for setting {key!r}")
        return default

    # ========== Gists ==========

    def save_gist(self, gist: GistRecord) -> str:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO gists (
                    id, chat_id, gist_id, gist_url, title, description,
                    content, is_public, tags, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    gist_id = excluded.gist_id,
                    gist_url = excluded.gist_url,
                    title = excluded.title,
                    description = excluded.description,
                    content = excluded.content,
                    is_public = excluded.is_public,
                    tags = excluded.tags,
                    updated_at = excluded.updated_at
            """, (
                gist.id,
                gist.chat_id,
                gist.gist_id,
                gist.gist_url,
                gist.title,
                gist.description,
                json.dumps(gist.content),
                int(gist.is_public),
                json.dumps(gist.tags),
                _ts(gist.created_at),
                _ts(gist.updated_at),
            ))
        return gist.id

    def get_gists(self, chat_id: str) -> List[GistRecord]:
        rows = self._query(
            "SELECT * FROM gists WHERE chat_id = ? ORDER BY created_at ASC",
            (chat_id,),
        )
        return [
            GistRecord(
                id=row["id"],
                chat_id=row["chat_id"],
                gist_id=row["gist_id"],
                gist_url=row["gist_url"],
                title=row["title"],
                description=row["description"],
                content=self._load_json(row["content"], [], "gist content"),
                is_public=bool(row["is_public"]),
                tags=self._load_json(row["tags"], [], "gist tags"),
                created_at=parse_datetime(row["created_at"]),
                updated_at=parse_datetime(row["updated_at"]),
            )
            for row in rows
        ]

    def delete_gists(self, chat_id: str) -> int:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM gists WHERE chat_id = ?", (chat_id,))
            return cursor.rowcount

    # ========== Token usage ==========

    def record_token_usage(self, usage: TokenUsageRecord) -> int:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO token_usage (
                    chat_id, model, input_tokens, output_tokens, total_tokens, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                usage.chat_id,
                usage.model,
                usage.input_tokens,
                usage.output_tokens,
                usage.total_tokens,
                _ts(usage.timestamp),
            ))
            usage.id = cursor.lastrowid
        return usage.id

    def get_token_usage(self, chat_id: str) -> List[TokenUsageRecord]:
        rows = self._query(
            "SELECT * FROM token_usage WHERE chat_id = ? ORDER BY timestamp ASC",
            (chat_id,),
        )
        return [
            TokenUsageRecord(
                id=row["id"],
                chat_id=row["chat_id"],
                model=row["model"],
                input_tokens=row["input_tokens"],
                output_tokens=row["output_tokens"],
                timestamp=parse_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    def get_token_totals(self, chat_id: Optional[str] = None) -> Dict[str, int]:
        """Summed token usage, for one chat or across all chats."""
        sql = """
            SELECT
                COALESCE(SUM(input_tokens), 0) AS input_tokens,
                COALESCE(SUM(output_tokens), 0) AS output_tokens,
                COALESCE(SUM(total_tokens), 0) AS total_tokens
            FROM token_usage
        """
        params: List[Any] = []
        if chat_id is not None:
            sql += " WHERE chat_id = ?"
            params.append(chat_id)
        row = self._query(sql, params)[0]
        return {
            "input_tokens": row["input_tokens"],
            "output_tokens": row["output_tokens"],
            "total_tokens": row["total_tokens"],
        }

    # ========== Branches ==========

    def save_branch(self, branch: BranchRecord) -> str:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO branches (
                    id, chat_id, repository, branch_name, last_activity,
                    pr_url, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    branch_name = excluded.branch_name,
                    last_activity = excluded.last_activity,
                    pr_url = excluded.pr_url,
                    status = excluded.status,
                    updated_at = excluded.updated_at
            """, (
                branch.id,
                branch.chat_id,
                branch.repository,
                branch.branch_name,
                _ts(branch.last_activity),
                branch.pr_url,
                branch.status,
                _ts(branch.created_at),
                _ts(branch.updated_at),
            ))
        return branch.id

    def get_branches(self, chat_id: str, repository: Optional[str] = None) -> List[BranchRecord]:
        sql = "SELECT * FROM branches WHERE chat_id = ?"
        params: List[Any] = [chat_id]
        if repository is not None:
            sql += " AND repository = ?"
            params.append(repository)
        sql += " ORDER BY created_at ASC"

        return [
            BranchRecord(
                id=row["id"],
                chat_id=row["chat_id"],
                repository=row["repository"],
                branch_name=row["branch_name"],
                status=row["status"],
                pr_url=row["pr_url"],
                last_activity=parse_datetime(row["last_activity"]),
                created_at=parse_datetime(row["created_at"]),
                updated_at=parse_datetime(row["updated_at"]),
            )
            for row in self._query(sql, params)
        ]

    def update_branch_status(
        self,
        branch_id: str,
        status: str,
        pr_url: Optional[str] = None,
    ) -> bool:
        now = _ts(utc_now())
        with self._transaction() as cursor:
            cursor.execute("""
                UPDATE branches SET
                    status = ?,
                    pr_url = COALESCE(?, pr_url),
                    last_activity = ?,
                    updated_at = ?
                WHERE id = ?
            """, (status, pr_url, now, now, branch_id))
            return cursor.rowcount > 0

    # ========== Codespaces ==========

    def save_codespace(self, codespace: CodespaceRecord) -> str:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO codespaces (
                    id, repository, codespace_id, display_name, state,
                    web_url, last_activity, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    display_name = excluded.display_name,
                    state = excluded.state,
                    web_url = excluded.web_url,
                    last_activity = excluded.last_activity,
                    updated_at = excluded.updated_at
            """, (
                codespace.id,
                codespace.repository,
                codespace.codespace_id,
                codespace.display_name,
                codespace.state,
                codespace.web_url,
                _ts(codespace.last_activity),
                _ts(codespace.created_at),
                _ts(codespace.updated_at),
            ))
        return codespace.id

    def get_codespaces(self, repository: Optional[str] = None) -> List[CodespaceRecord]:
        sql = "SELECT * FROM codespaces"
        params: List[Any] = []
        if repository is not None:
            sql += " WHERE repository = ?"
            params.append(repository)
        sql += " ORDER BY last_activity DESC"

        return [
            CodespaceRecord(
                id=row["id"],
                repository=row["repository"],
                codespace_id=row["codespace_id"],
                display_name=row["display_name"],
                state=row["state"],
                web_url=row["web_url"],
                last_activity=parse_datetime(row["last_activity"]),
                created_at=parse_datetime(row["created_at"]),
                updated_at=parse_datetime(row["updated_at"]),
            )
            for row in self._query(sql, params)
        ]

    def delete_codespace(self, codespace_id: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM codespaces WHERE id = ?", (codespace_id,))
            return cursor.rowcount > 0

    # ========== Maintenance ==========

    def get_stats(self) -> StoreStats:
        """Get memory store statistics."""
        stats = StoreStats(schema_version=self.schema_version)

        row = self._query("""
            SELECT COUNT(*) AS count, MIN(created_at) AS oldest, MAX(created_at) AS newest
            FROM memories
        """)[0]
        stats.total_memories = row["count"]
        stats.oldest_memory = parse_datetime(row["oldest"])
        stats.newest_memory = parse_datetime(row["newest"])
        stats.total_messages = self._query("SELECT COUNT(*) AS count FROM messages")[0]["count"]

        db_path = Path(self.db_path)
        if db_path.exists():
            stats.total_size_bytes = db_path.stat().st_size

        return stats

    def close(self):
        """Close the database connection of the calling thread."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
