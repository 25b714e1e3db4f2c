"""
Vector storage for semantic search.

Embeddings live in the memory_vectors companion table, one row per memory,
and are scored with a brute-force cosine scan. Rows are removed by the
foreign-key cascade when their memory is deleted.
"""

import json
import logging
import math
import sqlite3
from typing import Any, List, Optional, Sequence, Tuple

from ..errors import StorageError
from .sqlite import MemoryStore


logger = logging.getLogger(__name__)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Returns:
        Similarity in [-1, 1], or 0.0 for empty, mismatched or zero vectors
    """
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    dot = sum(a * b for a, b in zip(vec1, vec2))
    mag1 = math.sqrt(sum(a * a for a in vec1))
    mag2 = math.sqrt(sum(b * b for b in vec2))

    if mag1 == 0 or mag2 == 0:
        return 0.0

    return dot / (mag1 * mag2)


class VectorStore:
    """
    Stores and searches memory embeddings.

    Shares the connection and lock of a MemoryStore so vectors and rows
    are written through one engine.
    """

    def __init__(self, store: MemoryStore, dimensions: int = 384):
        """
        Args:
            store: The memory store whose connection to share
            dimensions: Expected length of every stored vector
        """
        self.store = store
        self.dimensions = dimensions

    def _check_dimensions(self, embedding: Sequence[float]) -> None:
        if len(embedding) != self.dimensions:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, "
                f"expected {self.dimensions}"
            )

    def store_embedding(self, memory_id: int, embedding: Sequence[float]) -> None:
        """
        Store (or replace) the embedding for a memory.

        Raises:
            ValueError: If the vector length does not match the configured
                dimensions
            ConstraintViolationError: If the memory does not exist
        """
        self._check_dimensions(embedding)
        with self.store._transaction("store_embedding") as conn:
            self._upsert(conn, memory_id, embedding)
        logger.debug(f"Stored embedding for memory {memory_id}")

    def store_batch(self, items: Sequence[Tuple[int, Sequence[float]]]) -> int:
        """
        Store several embeddings in one transaction.

        Returns:
            Number of embeddings stored
        """
        for _, embedding in items:
            self._check_dimensions(embedding)

        with self.store._transaction("store_embedding_batch") as conn:
            for memory_id, embedding in items:
                self._upsert(conn, memory_id, embedding)

        logger.debug(f"Stored {len(items)} embeddings")
        return len(items)

    def _upsert(
        self,
        conn: sqlite3.Connection,
        memory_id: int,
        embedding: Sequence[float],
    ) -> None:
        conn.execute(
            """
            INSERT INTO memory_vectors (memory_id, dimensions, embedding, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(memory_id) DO UPDATE SET
                dimensions = excluded.dimensions,
                embedding = excluded.embedding,
                created_at = excluded.created_at
            """,
            (memory_id, len(embedding), json.dumps([float(x) for x in embedding]),
             self.store.now()),
        )

    def get_embedding(self, memory_id: int) -> Optional[List[float]]:
        """Get the stored embedding for a memory, or None if pending."""
        with self.store._reading("get_embedding") as conn:
            row = conn.execute(
                "SELECT embedding FROM memory_vectors WHERE memory_id = ?",
                (memory_id,),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["embedding"])

    def has_embedding(self, memory_id: int) -> bool:
        with self.store._reading("has_embedding") as conn:
            row = conn.execute(
                "SELECT 1 FROM memory_vectors WHERE memory_id = ?",
                (memory_id,),
            ).fetchone()
        return row is not None

    def delete_embedding(self, memory_id: int) -> bool:
        """
        Delete the embedding for a memory.

        Returns:
            True if an embedding was deleted
        """
        with self.store._transaction("delete_embedding") as conn:
            cursor = conn.execute(
                "DELETE FROM memory_vectors WHERE memory_id = ?",
                (memory_id,),
            )
            return cursor.rowcount > 0

    def count(self) -> int:
        with self.store._reading("count_embeddings") as conn:
            return conn.execute("SELECT COUNT(*) FROM memory_vectors").fetchone()[0]

    def find_missing_embeddings(self, limit: int = 100) -> List[int]:
        """
        Find memories that have no embedding yet.

        Returns:
            Memory ids, oldest first
        """
        with self.store._reading("find_missing_embeddings") as conn:
            rows = conn.execute(
                """
                SELECT m.id FROM memories m
                LEFT JOIN memory_vectors v ON v.memory_id = m.id
                WHERE v.memory_id IS NULL
                ORDER BY m.id
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [row[0] for row in rows]

    def clean_orphans(self) -> int:
        """
        Delete embeddings whose memory no longer exists.

        Only needed for databases written without foreign key enforcement.

        Returns:
            Number of embeddings deleted
        """
        with self.store._transaction("clean_orphans") as conn:
            cursor = conn.execute(
                """
                DELETE FROM memory_vectors
                WHERE memory_id NOT IN (SELECT id FROM memories)
                """
            )
            deleted = cursor.rowcount

        if deleted:
            logger.info(f"Removed {deleted} orphaned embeddings")
        return deleted

    def search_similar(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.0,
        **filters: Any,
    ) -> List[Tuple[int, float]]:
        """
        Find the memories whose embeddings are closest to a query vector.

        Args:
            query_embedding: Query vector
            limit: Maximum number of results
            min_similarity: Keep only results scoring above this,
                so unrelated (zero similarity) vectors never match
            **filters: Search filters shared with full-text search
                (types, min_importance, include_private, phase, concepts)

        Returns:
            (memory_id, similarity) pairs, most similar first
        """
        self._check_dimensions(query_embedding)

        filter_sql, params = self.store.filter_sql(alias="m", **filters)
        sql = f"""
            SELECT v.memory_id, v.embedding FROM memory_vectors v
            JOIN memories m ON m.id = v.memory_id
            WHERE v.dimensions = ?{filter_sql}
        """

        with self.store._reading("search_similar") as conn:
            rows = conn.execute(sql, [self.dimensions, *params]).fetchall()

        scored: List[Tuple[int, float]] = []
        for row in rows:
            try:
                embedding = json.loads(row["embedding"])
            except ValueError as e:
                raise StorageError(
                    f"corrupt embedding for memory {row['memory_id']}: {e}",
                    operation="search_similar",
                ) from e
            similarity = cosine_similarity(query_embedding, embedding)
            if similarity > min_similarity:
                scored.append((row["memory_id"], similarity))

        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:limit]
