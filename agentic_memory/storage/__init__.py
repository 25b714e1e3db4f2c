"""
Persistence layer: SQLite schema, memory store and vector index.
"""

from .schema import SCHEMA_VERSION, SchemaManager
from .sqlite import MemoryStore, build_fts_query
from .vector import VectorStore, cosine_similarity

__all__ = [
    "SCHEMA_VERSION",
    "SchemaManager",
    "MemoryStore",
    "build_fts_query",
    "VectorStore",
    "cosine_similarity",
]
