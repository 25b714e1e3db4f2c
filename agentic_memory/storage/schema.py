"""
SQLite schema and migrations for memory storage.

The memories table is mirrored by an FTS5 external-content index. Triggers
apply every insert, delete and text update to the index inside the same
transaction as the row change, so the two can never diverge.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import SchemaError
from ..types import MemoryStats, MemoryType, Visibility


logger = logging.getLogger(__name__)


# Schema version the code expects
SCHEMA_VERSION = 2

# Milliseconds to wait on a locked database before failing
BUSY_TIMEOUT_MS = 5000

PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = -64000",
    "PRAGMA temp_store = MEMORY",
    f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}",
    "PRAGMA foreign_keys = ON",
]

# bm25 column weights: title, content, facts, concepts
FTS_WEIGHTS = (10.0, 5.0, 1.0, 1.0)

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in MemoryType)
_VISIBILITY_VALUES = ", ".join(f"'{v.value}'" for v in Visibility)

MEMORIES_TABLE_SQL = f"""
    CREATE TABLE IF NOT EXISTS memories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL DEFAULT 'observation'
            CHECK (type IN ({_TYPE_VALUES})),
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        facts TEXT NOT NULL DEFAULT '[]',
        concepts TEXT NOT NULL DEFAULT '[]',
        source_files TEXT NOT NULL DEFAULT '[]',
        importance INTEGER NOT NULL DEFAULT 5
            CHECK (importance >= 1 AND importance <= 10),
        visibility TEXT NOT NULL DEFAULT 'public'
            CHECK (visibility IN ({_VISIBILITY_VALUES})),
        phase TEXT,
        session_id TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        accessed_at INTEGER NOT NULL,
        access_count INTEGER NOT NULL DEFAULT 0
    )
"""

MEMORIES_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)",
    "CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance)",
    "CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_memories_phase ON memories(phase)",
    "CREATE INDEX IF NOT EXISTS idx_memories_visibility ON memories(visibility)",
    "CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id)",
]

FTS_TABLE_SQL = """
    CREATE VIRTUAL TABLE memories_fts USING fts5(
        title,
        content,
        facts,
        concepts,
        content='memories',
        content_rowid='id',
        tokenize='porter unicode61 remove_diacritics 2',
        prefix='2 3'
    )
"""

FTS_TRIGGERS_SQL = [
    """
    CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
        INSERT INTO memories_fts(rowid, title, content, facts, concepts)
        VALUES (new.id, new.title, new.content, new.facts, new.concepts);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
        INSERT INTO memories_fts(memories_fts, rowid, title, content, facts, concepts)
        VALUES ('delete', old.id, old.title, old.content, old.facts, old.concepts);
    END
    """,
    # Access tracking updates leave the indexed columns alone, so only
    # text changes re-index the row.
    """
    CREATE TRIGGER IF NOT EXISTS memories_au
    AFTER UPDATE OF title, content, facts, concepts ON memories BEGIN
        INSERT INTO memories_fts(memories_fts, rowid, title, content, facts, concepts)
        VALUES ('delete', old.id, old.title, old.content, old.facts, old.concepts);
        INSERT INTO memories_fts(rowid, title, content, facts, concepts)
        VALUES (new.id, new.title, new.content, new.facts, new.concepts);
    END
    """,
]

VECTORS_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS memory_vectors (
        memory_id INTEGER PRIMARY KEY
            REFERENCES memories(id) ON DELETE CASCADE,
        dimensions INTEGER NOT NULL,
        embedding TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )
"""


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _migrate_v1(conn: sqlite3.Connection) -> None:
    """Base schema: memories table, indexes, FTS index and triggers."""
    conn.execute(MEMORIES_TABLE_SQL)
    for statement in MEMORIES_INDEXES_SQL:
        conn.execute(statement)

    if not _table_exists(conn, "memories_fts"):
        conn.execute(FTS_TABLE_SQL)
        # Index rows that predate the FTS table
        conn.execute("""
            INSERT INTO memories_fts(rowid, title, content, facts, concepts)
            SELECT id, title, content, facts, concepts FROM memories
        """)

    for statement in FTS_TRIGGERS_SQL:
        conn.execute(statement)


def _migrate_v2(conn: sqlite3.Connection) -> None:
    """Companion table holding one embedding per memory."""
    conn.execute(VECTORS_TABLE_SQL)


# Ordered migrations; each must be safe to re-run
MIGRATIONS: List[Tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (1, _migrate_v1),
    (2, _migrate_v2),
]


class SchemaManager:
    """
    Owns the on-disk structure of a memory database.

    Applies connection pragmas, runs pending migrations in order and
    exposes FTS maintenance operations.
    """

    def __init__(self, conn: sqlite3.Connection):
        """
        Args:
            conn: Open connection in autocommit mode (isolation_level=None)
        """
        self._conn = conn

    def initialize(self) -> int:
        """
        Configure the connection and bring the schema up to date.

        Returns:
            The schema version after migration

        Raises:
            SchemaError: If the database was written by a newer version
        """
        for pragma in PRAGMAS:
            self._conn.execute(pragma)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
            )
        """)

        current = self.get_version()
        if current > SCHEMA_VERSION:
            raise SchemaError(
                f"database schema v{current} is newer than supported "
                f"v{SCHEMA_VERSION}",
                operation="migrate",
            )

        if current < SCHEMA_VERSION:
            self._apply_migrations(current)
        else:
            # Re-running v1 is cheap and restores dropped triggers
            self._run_in_transaction(_migrate_v1)

        return self.get_version()

    def get_version(self) -> int:
        """Get the highest applied schema version (0 for a new database)."""
        try:
            row = self._conn.execute(
                "SELECT MAX(version) FROM schema_version"
            ).fetchone()
        except sqlite3.OperationalError:
            return 0
        return row[0] or 0

    def _apply_migrations(self, from_version: int) -> None:
        """Apply every migration newer than from_version, in order."""
        for version, migration in MIGRATIONS:
            if version <= from_version:
                continue

            def apply(conn, migration=migration, version=version):
                migration(conn)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                    (version,),
                )

            try:
                self._run_in_transaction(apply)
            except sqlite3.Error as e:
                raise SchemaError(str(e), operation=f"migrate v{version}") from e

            logger.info(f"Applied memory schema migration v{version}")

        logger.info(
            f"Migrated memory schema from v{from_version} to v{SCHEMA_VERSION}"
        )

    def _run_in_transaction(self, fn: Callable[[sqlite3.Connection], None]) -> None:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            fn(self._conn)
        except Exception:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    def optimize(self) -> None:
        """Merge FTS index segments. Safe to run at any time."""
        self._conn.execute("INSERT INTO memories_fts(memories_fts) VALUES('optimize')")
        logger.debug("Optimized memory FTS index")

    def rebuild(self) -> None:
        """Rebuild the FTS index from the memories table."""
        self._conn.execute("INSERT INTO memories_fts(memories_fts) VALUES('rebuild')")
        logger.info("Rebuilt memory FTS index")

    def integrity_check(self) -> bool:
        """
        Check that the FTS index matches the memories table.

        Returns:
            True if the index is consistent
        """
        try:
            self._conn.execute(
                "INSERT INTO memories_fts(memories_fts, rank) VALUES('integrity-check', 1)"
            )
        except sqlite3.DatabaseError as e:
            logger.warning(f"Memory FTS integrity check failed: {e}")
            return False
        return True

    def get_stats(self, db_path: Optional[str] = None) -> MemoryStats:
        """Collect row counts and date range for the memories table."""
        stats = MemoryStats()

        stats.total_memories = self._conn.execute(
            "SELECT COUNT(*) FROM memories"
        ).fetchone()[0]

        by_type: Dict[str, int] = {}
        for row in self._conn.execute(
            "SELECT type, COUNT(*) FROM memories GROUP BY type"
        ):
            by_type[row[0]] = row[1]
        stats.by_type = by_type

        by_visibility: Dict[str, int] = {}
        for row in self._conn.execute(
            "SELECT visibility, COUNT(*) FROM memories GROUP BY visibility"
        ):
            by_visibility[row[0]] = row[1]
        stats.by_visibility = by_visibility

        oldest, newest = self._conn.execute(
            "SELECT MIN(created_at), MAX(created_at) FROM memories"
        ).fetchone()
        stats.oldest_memory = oldest
        stats.newest_memory = newest

        if _table_exists(self._conn, "memory_vectors"):
            stats.total_vectors = self._conn.execute(
                "SELECT COUNT(*) FROM memory_vectors"
            ).fetchone()[0]

        if db_path and db_path != ":memory:":
            path = Path(db_path)
            if path.exists():
                stats.total_size_bytes = path.stat().st_size

        return stats
