"""
SQLite memory store with FTS5 full-text search.

Provides CRUD, ranked search, scoped queries and retention trimming over
the schema defined in schema.py.
"""

import json
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..errors import ConstraintViolationError, StorageError
from ..types import (
    DEFAULT_IMPORTANCE,
    MatchType,
    Memory,
    MemoryInput,
    MemoryStats,
    MemoryType,
    MemoryUpdate,
    SearchResult,
    Visibility,
    unix_now,
)
from .schema import FTS_WEIGHTS, SchemaManager


logger = logging.getLogger(__name__)


SECONDS_PER_DAY = 24 * 60 * 60

# Characters with meaning in FTS5 query syntax
_FTS_SPECIAL_CHARS = re.compile(r'[*"()]')

_UPDATABLE_COLUMNS = [
    ("title", "title"),
    ("content", "content"),
    ("facts", "facts"),
    ("concepts", "concepts"),
    ("source_files", "source_files"),
    ("importance", "importance"),
    ("visibility", "visibility"),
]

_JSON_COLUMNS = {"facts", "concepts", "source_files"}

_SELECT_BY_ID = "SELECT * FROM memories WHERE id = ?"


def build_fts_query(query: str) -> str:
    """
    Turn free text into an FTS5 MATCH expression.

    Each whitespace-separated term is quoted and prefix-matched, and
    terms are OR-combined, so "auth log" becomes '"auth"* OR "log"*'.

    Returns:
        The MATCH expression, or an empty string if no terms remain
    """
    terms = _FTS_SPECIAL_CHARS.sub(" ", query or "").split()
    return " OR ".join(f'"{term}"*' for term in terms)


class MemoryStore:
    """
    SQLite-based memory storage.

    Owns a single connection for its whole lifetime. Operations are
    serialized with an instance lock; contention with other processes
    is handled by SQLite's busy timeout.
    """

    # Default database location, relative to the home directory
    DEFAULT_DB_PATH = ".agentic_memory/memory.db"

    # Compiled statements kept by the connection, freed on close()
    STATEMENT_CACHE_SIZE = 64

    def __init__(
        self,
        db_path: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Open (and create if needed) a memory database.

        Args:
            db_path: Path to the database file. If None, uses the default
                under the home directory. ":memory:" opens a private
                in-memory database.
            clock: Returns the current time in Unix seconds. Defaults to
                the system clock.
        """
        if db_path is None:
            db_path = str(Path.home() / self.DEFAULT_DB_PATH)

        self.db_path = db_path
        self._clock = clock or unix_now
        self._lock = threading.RLock()
        self._closed = False

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                db_path,
                isolation_level=None,
                check_same_thread=False,
                timeout=5.0,
                cached_statements=self.STATEMENT_CACHE_SIZE,
            )
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="open") from e

        self._conn.row_factory = sqlite3.Row
        self.schema = SchemaManager(self._conn)
        try:
            self.schema.initialize()
        except Exception:
            self._conn.close()
            self._conn = None
            raise

        logger.debug(f"Opened memory store at {db_path}")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the underlying connection (shared with the vector store)."""
        if self._conn is None:
            raise StorageError("memory store is closed", operation="connection")
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        """Lock serializing access to the connection."""
        return self._lock

    @property
    def is_closed(self) -> bool:
        return self._conn is None

    def now(self) -> int:
        """Current time according to the store's clock."""
        return int(self._clock())

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one write transaction.

        Nested use joins the outer transaction. sqlite errors are mapped
        to StorageError / ConstraintViolationError naming the operation.
        """
        with self._lock:
            conn = self.connection
            owns_transaction = not conn.in_transaction
            try:
                if owns_transaction:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                if owns_transaction:
                    conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                if owns_transaction and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise ConstraintViolationError(str(e), operation=operation) from e
            except sqlite3.Error as e:
                if owns_transaction and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(str(e), operation=operation) from e
            except BaseException:
                if owns_transaction and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def _reading(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a read-only block, mapping sqlite errors."""
        with self._lock:
            conn = self.connection
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageError(str(e), operation=operation) from e

    # ========== CRUD ==========

    def create(self, memory_input: MemoryInput) -> Memory:
        """
        Create a new memory.

        The store does not validate input; schema constraints still apply
        and surface as ConstraintViolationError.

        Args:
            memory_input: The memory to persist

        Returns:
            The persisted memory with its assigned id and timestamps
        """
        now = self.now()
        sql = """
            INSERT INTO memories (
                type, title, content, facts, concepts, source_files,
                importance, visibility, phase, session_id,
                created_at, updated_at, accessed_at, access_count
            ) VALUES (
                :type, :title, :content, :facts, :concepts, :source_files,
                :importance, :visibility, :phase, :session_id,
                :now, :now, :now, 0
            )
        """

        params = {
            "type": _enum_value(memory_input.type),
            "title": memory_input.title,
            "content": memory_input.content,
            "facts": json.dumps(list(memory_input.facts or [])),
            "concepts": json.dumps(list(memory_input.concepts or [])),
            "source_files": json.dumps(list(memory_input.source_files or [])),
            "importance": (
                DEFAULT_IMPORTANCE if memory_input.importance is None
                else memory_input.importance
            ),
            "visibility": _enum_value(memory_input.visibility or Visibility.PUBLIC),
            "phase": memory_input.phase,
            "session_id": memory_input.session_id,
            "now": now,
        }

        with self._transaction("create") as conn:
            cursor = conn.execute(sql, params)
            memory_id = cursor.lastrowid
            row = conn.execute(
                _SELECT_BY_ID,
                (memory_id,),
            ).fetchone()

        logger.debug(f"Created memory {memory_id}")
        return Memory.from_row(row)

    def get_by_id(self, memory_id: int) -> Optional[Memory]:
        """
        Retrieve a memory by id, recording the access.

        Increments access_count and refreshes accessed_at without touching
        updated_at.

        Returns:
            The memory with its updated access stats, or None if not found
        """
        with self._transaction("get_by_id") as conn:
            cursor = conn.execute(
                """
                    UPDATE memories
                    SET accessed_at = ?, access_count = access_count + 1
                    WHERE id = ?
                """,
                (self.now(), memory_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                _SELECT_BY_ID,
                (memory_id,),
            ).fetchone()

        return Memory.from_row(row)

    def get_many(self, memory_ids: Sequence[int]) -> Dict[int, Memory]:
        """
        Load several memories by id without recording access.

        Returns:
            Mapping of id to memory for the ids that exist
        """
        if not memory_ids:
            return {}

        placeholders = ",".join("?" * len(memory_ids))
        with self._reading("get_many") as conn:
            rows = conn.execute(
                f"SELECT * FROM memories WHERE id IN ({placeholders})",
                list(memory_ids),
            ).fetchall()

        return {row["id"]: Memory.from_row(row) for row in rows}

    def peek(self, memory_id: int) -> Optional[Memory]:
        """Load a memory by id without recording access."""
        return self.get_many([memory_id]).get(memory_id)

    def update(self, memory_id: int, updates: MemoryUpdate) -> Optional[Memory]:
        """
        Apply a partial update.

        Only provided fields change; updated_at is always bumped. The FTS
        index is re-synchronized by the schema triggers.

        Returns:
            The updated memory, or None if not found
        """
        set_clauses = ["updated_at = :updated_at"]
        params: Dict[str, Any] = {"id": memory_id, "updated_at": self.now()}

        for attr, column in _UPDATABLE_COLUMNS:
            value = getattr(updates, attr)
            if value is None:
                continue
            if column in _JSON_COLUMNS:
                value = json.dumps(list(value))
            elif column == "visibility":
                value = _enum_value(value)
            set_clauses.append(f"{column} = :{column}")
            params[column] = value

        sql = f"UPDATE memories SET {', '.join(set_clauses)} WHERE id = :id"

        with self._transaction("update") as conn:
            cursor = conn.execute(sql, params)
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                _SELECT_BY_ID,
                (memory_id,),
            ).fetchone()

        logger.debug(f"Updated memory {memory_id}")
        return Memory.from_row(row)

    def delete(self, memory_id: int) -> bool:
        """
        Delete a memory, its index entry and its embedding.

        Returns:
            True if the memory was deleted, False if not found
        """
        with self._transaction("delete") as conn:
            cursor = conn.execute(
                "DELETE FROM memories WHERE id = ?",
                (memory_id,),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted memory {memory_id}")
        return deleted

    def create_batch(self, inputs: Sequence[MemoryInput]) -> List[Memory]:
        """
        Create several memories in one transaction.

        If any insert fails, none are committed.

        Returns:
            The persisted memories, in input order
        """
        memories: List[Memory] = []
        with self._transaction("create_batch"):
            for memory_input in inputs:
                memories.append(self.create(memory_input))

        logger.debug(f"Created batch of {len(memories)} memories")
        return memories

    # ========== Queries ==========

    def _filter_clauses(
        self,
        types: Optional[Sequence[MemoryType]] = None,
        min_importance: Optional[int] = None,
        include_private: bool = False,
        phase: Optional[str] = None,
        concepts: Optional[Sequence[str]] = None,
        alias: str = "",
    ) -> Tuple[List[str], List[Any]]:
        """Build WHERE conjunctions for the shared search filters."""
        prefix = f"{alias}." if alias else ""
        conditions: List[str] = []
        params: List[Any] = []

        if types:
            placeholders = ",".join("?" * len(types))
            conditions.append(f"{prefix}type IN ({placeholders})")
            params.extend(_enum_value(t) for t in types)

        if min_importance:
            conditions.append(f"{prefix}importance >= ?")
            params.append(min_importance)

        if not include_private:
            conditions.append(f"{prefix}visibility = ?")
            params.append(Visibility.PUBLIC.value)

        if phase:
            conditions.append(f"{prefix}phase = ?")
            params.append(phase)

        if concepts:
            concept_conditions = []
            for concept in concepts:
                concept_conditions.append(f"{prefix}concepts LIKE ?")
                params.append(f"%{concept}%")
            conditions.append(f"({' OR '.join(concept_conditions)})")

        return conditions, params

    def filter_sql(self, alias: str = "m", **filters: Any) -> Tuple[str, List[Any]]:
        """
        Build an "AND ..." suffix for the shared search filters.

        Used by the vector store so both retrieval paths honor the same
        predicates.
        """
        conditions, params = self._filter_clauses(alias=alias, **filters)
        if not conditions:
            return "", []
        return " AND " + " AND ".join(conditions), params

    def search_fts(
        self,
        query: str,
        limit: int = 10,
        types: Optional[Sequence[MemoryType]] = None,
        min_importance: Optional[int] = None,
        include_private: bool = False,
        phase: Optional[str] = None,
        concepts: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        """
        Full-text search with bm25 ranking.

        Terms are prefix-matched and OR-combined. Filters are applied as
        extra conjunctions alongside the MATCH. Title matches weigh more
        than content, which weighs more than facts and concepts.

        Args:
            query: Free-text query
            limit: Maximum number of results
            types: Restrict to these memory types
            min_importance: Minimum importance
            include_private: Whether private memories are searched
            phase: Restrict to a workflow phase
            concepts: Restrict to memories tagged with any of these

        Returns:
            Results ordered best first; score is higher for better matches.
            An empty or whitespace-only query returns an empty list.
        """
        match_expr = build_fts_query(query)
        if not match_expr:
            return []

        filter_sql, filter_params = self.filter_sql(
            alias="m",
            types=types,
            min_importance=min_importance,
            include_private=include_private,
            phase=phase,
            concepts=concepts,
        )
        weights = ", ".join(str(w) for w in FTS_WEIGHTS)

        sql = f"""
            SELECT
                m.*,
                bm25(memories_fts, {weights}) AS rank,
                highlight(memories_fts, 0, '<mark>', '</mark>') AS highlighted_title,
                highlight(memories_fts, 1, '<mark>', '</mark>') AS highlighted_content
            FROM memories_fts
            JOIN memories m ON m.id = memories_fts.rowid
            WHERE memories_fts MATCH ?{filter_sql}
            ORDER BY rank, m.id
            LIMIT ?
        """

        with self._reading("search_fts") as conn:
            rows = conn.execute(sql, [match_expr, *filter_params, limit]).fetchall()

        results = []
        for row in rows:
            highlighted = row["highlighted_content"]
            if not highlighted or "<mark>" not in highlighted:
                highlighted = row["highlighted_title"]
            results.append(SearchResult(
                memory=Memory.from_row(row),
                # bm25() is negative with lower meaning better
                score=-row["rank"],
                match_type=MatchType.FTS,
                highlighted=highlighted,
            ))
        return results

    def get_recent(
        self,
        limit: int = 10,
        types: Optional[Sequence[MemoryType]] = None,
        include_private: bool = False,
    ) -> List[Memory]:
        """Get the newest memories, public-only unless include_private."""
        conditions, params = self._filter_clauses(
            types=types, include_private=include_private,
        )
        sql = "SELECT * FROM memories"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"

        with self._reading("get_recent") as conn:
            rows = conn.execute(sql, [*params, limit]).fetchall()
        return [Memory.from_row(row) for row in rows]

    def get_by_concepts(self, concepts: Sequence[str], limit: int = 10) -> List[Memory]:
        """
        Get public memories tagged with any of the given concepts.

        Concepts match as substrings of the stored tag list. Ordered by
        importance, then newest first.
        """
        if not concepts:
            return []

        conditions, params = self._filter_clauses(concepts=concepts)
        sql = f"""
            SELECT * FROM memories
            WHERE {' AND '.join(conditions)}
            ORDER BY importance DESC, created_at DESC, id DESC
            LIMIT ?
        """

        with self._reading("get_by_concepts") as conn:
            rows = conn.execute(sql, [*params, limit]).fetchall()
        return [Memory.from_row(row) for row in rows]

    def get_by_phase(self, phase: str, limit: int = 10) -> List[Memory]:
        """Get public memories recorded in a workflow phase, newest first."""
        sql = """
            SELECT * FROM memories
            WHERE phase = ? AND visibility = 'public'
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """
        with self._reading("get_by_phase") as conn:
            rows = conn.execute(sql, (phase, limit)).fetchall()
        return [Memory.from_row(row) for row in rows]

    def get_by_session(self, session_id: str) -> List[Memory]:
        """Get every memory of a session in conversation order."""
        sql = """
            SELECT * FROM memories
            WHERE session_id = ?
            ORDER BY created_at ASC, id ASC
        """
        with self._reading("get_by_session") as conn:
            rows = conn.execute(sql, (session_id,)).fetchall()
        return [Memory.from_row(row) for row in rows]

    def count(
        self,
        types: Optional[Sequence[MemoryType]] = None,
        include_private: bool = False,
    ) -> int:
        """Count memories, public-only unless include_private."""
        conditions, params = self._filter_clauses(
            types=types, include_private=include_private,
        )
        sql = "SELECT COUNT(*) FROM memories"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        with self._reading("count") as conn:
            return conn.execute(sql, params).fetchone()[0]

    # ========== Retention ==========

    def delete_older_than(self, days: int) -> int:
        """
        Delete memories created more than `days` days ago.

        Importance is not considered.

        Returns:
            Number of memories deleted
        """
        cutoff = self.now() - days * SECONDS_PER_DAY
        with self._transaction("delete_older_than") as conn:
            cursor = conn.execute(
                "DELETE FROM memories WHERE created_at < ?",
                (cutoff,),
            )
            deleted = cursor.rowcount

        if deleted:
            logger.info(f"Deleted {deleted} memories older than {days} days")
        return deleted

    def trim_to_max(self, max_count: int) -> int:
        """
        Evict memories until at most max_count remain.

        Victims are the least important first, then the least recently
        accessed, then the lowest id, so repeated trims converge.
        Private memories count toward the total.

        Returns:
            Number of memories deleted

        Raises:
            ValueError: If max_count is negative
        """
        if max_count < 0:
            raise ValueError(f"max_count must be non-negative, got {max_count}")

        with self._transaction("trim_to_max") as conn:
            total = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
            if total <= max_count:
                return 0

            to_delete = total - max_count
            cursor = conn.execute(
                """
                    DELETE FROM memories WHERE id IN (
                        SELECT id FROM memories
                        ORDER BY importance ASC, accessed_at ASC, id ASC
                        LIMIT ?
                    )
                """,
                (to_delete,),
            )
            deleted = cursor.rowcount

        logger.info(f"Trimmed {deleted} memories to stay within {max_count}")
        return deleted

    # ========== Maintenance ==========

    def optimize(self) -> None:
        """Compact the full-text index."""
        with self._transaction("optimize"):
            self.schema.optimize()

    def rebuild_index(self) -> None:
        """Reconstruct the full-text index from the memories table."""
        with self._transaction("rebuild_index"):
            self.schema.rebuild()

    def check_index(self) -> bool:
        """Check that the full-text index matches the memories table."""
        with self._reading("check_index"):
            return self.schema.integrity_check()

    def get_stats(self) -> MemoryStats:
        """Get memory usage statistics."""
        with self._reading("get_stats"):
            return self.schema.get_stats(self.db_path)

    def export_all(self) -> List[Dict[str, Any]]:
        """Export every memory (including private) as dictionaries."""
        with self._reading("export_all") as conn:
            rows = conn.execute("SELECT * FROM memories ORDER BY id").fetchall()
        return [Memory.from_row(row).to_dict() for row in rows]

    def close(self) -> None:
        """
        Close the connection, releasing its compiled statements.

        Safe to call more than once.
        """
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.debug(f"Closed memory store at {self.db_path}")

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value
