"""
Schema migrations for the memory store.

Each migration is applied exactly once and recorded in the
``schema_migrations`` table, so running the migrator at every start-up
is safe.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from ..errors import MigrationError
from .types import utc_now

logger = logging.getLogger(__name__)


MigrationStep = Callable[[sqlite3.Cursor], None]


@dataclass(frozen=True)
class Migration:
    """
    A versioned schema change.

    Attributes:
        version: Strictly increasing schema version
        description: Human readable summary, stored with the version
        up: Applies the change
        down: Reverts the change; migrations without one cannot be rolled back
    """

    version: int
    description: str
    up: MigrationStep
    down: Optional[MigrationStep] = None


def _run(cursor: sqlite3.Cursor, *statements: str) -> None:
    for statement in statements:
        cursor.execute(statement)


# ---------------------------------------------------------------------------
# Built-in migrations
# ---------------------------------------------------------------------------

def _initial_schema_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS bio (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS memories (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            tags TEXT NOT NULL,
            summary TEXT NOT NULL,
            key_terms TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_message_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            chat_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            thinking TEXT,
            model TEXT,
            FOREIGN KEY (chat_id) REFERENCES memories (id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id)",
        "CREATE INDEX IF NOT EXISTS idx_memories_last_message_at ON memories(last_message_at)",
        "CREATE INDEX IF NOT EXISTS idx_memories_key_terms ON memories(key_terms)",
    )


def _initial_schema_down(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        "DROP TABLE IF EXISTS messages",
        "DROP TABLE IF EXISTS memories",
        "DROP TABLE IF EXISTS bio",
    )


def _settings_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'string',
            updated_at TEXT NOT NULL
        )
        """,
    )


def _settings_down(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "DROP TABLE IF EXISTS settings")


def _gists_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS gists (
            id TEXT PRIMARY KEY,
            chat_id TEXT NOT NULL,
            gist_id TEXT NOT NULL,
            gist_url TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            content TEXT NOT NULL,
            is_public INTEGER NOT NULL DEFAULT 0,
            tags TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (chat_id) REFERENCES memories (id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_gists_chat_id ON gists(chat_id)",
        "CREATE INDEX IF NOT EXISTS idx_gists_gist_id ON gists(gist_id)",
    )


def _gists_down(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "DROP TABLE IF EXISTS gists")


def _token_usage_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS token_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            chat_id TEXT NOT NULL,
            model TEXT NOT NULL,
            input_tokens INTEGER NOT NULL DEFAULT 0,
            output_tokens INTEGER NOT NULL DEFAULT 0,
            total_tokens INTEGER NOT NULL DEFAULT 0,
            timestamp TEXT NOT NULL,
            FOREIGN KEY (chat_id) REFERENCES memories (id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_token_usage_chat_id ON token_usage(chat_id)",
        "CREATE INDEX IF NOT EXISTS idx_token_usage_timestamp ON token_usage(timestamp)",
    )


def _token_usage_down(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "DROP TABLE IF EXISTS token_usage")


def _branches_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS branches (
            id TEXT PRIMARY KEY,
            chat_id TEXT NOT NULL,
            repository TEXT NOT NULL,
            branch_name TEXT NOT NULL,
            last_activity TEXT NOT NULL,
            pr_url TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (chat_id) REFERENCES memories (id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_branches_chat_id ON branches(chat_id)",
        "CREATE INDEX IF NOT EXISTS idx_branches_repository ON branches(repository)",
    )


def _branches_down(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "DROP TABLE IF EXISTS branches")


def _codespaces_up(cursor: sqlite3.Cursor) -> None:
    _run(
        cursor,
        """
        CREATE TABLE IF NOT EXISTS codespaces (
            id TEXT PRIMARY KEY,
            repository TEXT NOT NULL,
            codespace_id TEXT NOT NULL,
            display_name TEXT NOT NULL,
            state TEXT NOT NULL,
            web_url TEXT NOT NULL,
            last_activity TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_codespaces_repository ON codespaces(repository)",
        "CREATE INDEX IF NOT EXISTS idx_codespaces_state ON codespaces(state)",
    )


def _codespaces_down(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "DROP TABLE IF EXISTS codespaces")


def _memory_embedding_up(cursor: sqlite3.Cursor) -> None:
    _run(cursor, "ALTER TABLE memories ADD COLUMN embedding TEXT")


def _memory_embedding_down(cursor: sqlite3.Cursor) -> None:
    # DROP COLUMN needs SQLite 3.35+
    _run(cursor, "ALTER TABLE memories DROP COLUMN embedding")


MIGRATIONS: List[Migration] = [
    Migration(1, "Initial database schema", _initial_schema_up, _initial_schema_down),
    Migration(2, "Add settings and preferences table", _settings_up, _settings_down),
    Migration(3, "Add gists and sharing tables", _gists_up, _gists_down),
    Migration(4, "Add token usage tracking", _token_usage_up, _token_usage_down),
    Migration(5, "Add branch management for code mode", _branches_up, _branches_down),
    Migration(6, "Add codespace tracking", _codespaces_up, _codespaces_down),
    Migration(7, "Store summary embeddings on memories", _memory_embedding_up, _memory_embedding_down),
]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """Run statements in an explicit transaction, DDL included."""
    cursor = conn.cursor()
    cursor.execute("BEGIN")
    try:
        yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cursor.close()


class MigrationRunner:
    """
    Applies and reverts schema migrations.

    The connection must be opened with ``isolation_level=None`` so that
    each migration and its tracking row commit or roll back together.

    Example:
        >>> runner = MigrationRunner()
        >>> runner.migrate(conn)
        [1, 2, 3, 4, 5, 6, 7]
        >>> runner.migrate(conn)
        []
    """

    def __init__(self, migrations: Optional[Sequence[Migration]] = None):
        """
        Initialize the runner.

        Args:
            migrations: Migrations to manage. Defaults to the built-in list.

        Raises:
            ValueError: If versions are not unique positive integers.
        """
        ordered = sorted(migrations if migrations is not None else MIGRATIONS, key=lambda m: m.version)
        versions = [m.version for m in ordered]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions: {versions}")
        if versions and versions[0] < 1:
            raise ValueError("Migration versions must be positive")
        self._migrations = ordered

    @property
    def migrations(self) -> List[Migration]:
        return list(self._migrations)

    @property
    def latest_version(self) -> int:
        """Highest version this runner knows about."""
        return self._migrations[-1].version if self._migrations else 0

    def _ensure_tracking_table(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)

    def current_version(self, conn: sqlite3.Connection) -> int:
        """Highest applied version, 0 for a fresh database."""
        self._ensure_tracking_table(conn)
        row = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()
        return row[0] or 0

    def pending_migrations(self, current_version: int) -> List[Migration]:
        return [m for m in self._migrations if m.version > current_version]

    def status(self, conn: sqlite3.Connection) -> List[Dict[str, object]]:
        """Describe every known migration and whether it has been applied."""
        self._ensure_tracking_table(conn)
        applied = {
            row[0]: row[1]
            for row in conn.execute("SELECT version, applied_at FROM schema_migrations")
        }
        return [
            {
                "version": m.version,
                "description": m.description,
                "applied_at": applied.get(m.version),
                "reversible": m.down is not None,
            }
            for m in self._migrations
        ]

    def migrate(self, conn: sqlite3.Connection) -> List[int]:
        """
        Apply all pending migrations in ascending order.

        Returns:
            Versions that were applied by this call.

        Raises:
            MigrationError: If a migration fails. Earlier migrations stay
                applied; the failing one is rolled back.
        """
        current_version = self.current_version(conn)
        logger.info(f"Current database version: {current_version}")

        applied = []
        for migration in self.pending_migrations(current_version):
            logger.info(f"Applying migration {migration.version}: {migration.description}")
            try:
                with _transaction(conn) as cursor:
                    migration.up(cursor)
                    cursor.execute(
                        "INSERT INTO schema_migrations (version, description, applied_at) VALUES (?, ?, ?)",
                        (migration.version, migration.description, utc_now().isoformat()),
                    )
            except Exception as e:
                logger.error(f"Migration {migration.version} failed: {e}")
                raise MigrationError(
                    f"Migration {migration.version} ({migration.description}) failed: {e}",
                    version=migration.version,
                ) from e
            applied.append(migration.version)

        if applied:
            logger.info(f"Database migrated to version {applied[-1]}")
        return applied

    def rollback(self, conn: sqlite3.Connection, target_version: int) -> List[int]:
        """
        Revert migrations above target_version, newest first.

        Every migration in the range must define ``down``; otherwise
        nothing is reverted.

        Returns:
            Versions that were rolled back.

        Raises:
            MigrationError: If a migration in range is irreversible or
                its ``down`` step fails.
        """
        current_version = self.current_version(conn)
        if target_version >= current_version:
            logger.info("No rollback needed")
            return []

        to_revert = [
            m for m in reversed(self._migrations)
            if target_version < m.version <= current_version
        ]
        irreversible = [m.version for m in to_revert if m.down is None]
        if irreversible:
            raise MigrationError(
                f"Cannot roll back to version {target_version}: "
                f"migrations {irreversible} have no down step",
                version=irreversible[0],
            )

        logger.info(f"Rolling back from version {current_version} to {target_version}")

        reverted = []
        for migration in to_revert:
            logger.info(f"Rolling back migration {migration.version}: {migration.description}")
            try:
                with _transaction(conn) as cursor:
                    migration.down(cursor)
                    cursor.execute(
                        "DELETE FROM schema_migrations WHERE version = ?",
                        (migration.version,),
                    )
            except Exception as e:
                logger.error(f"Rollback of migration {migration.version} failed: {e}")
                raise MigrationError(
                    f"Rollback of migration {migration.version} failed: {e}",
                    version=migration.version,
                ) from e
            reverted.append(migration.version)

        return reverted
