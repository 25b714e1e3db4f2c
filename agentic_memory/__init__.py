"""
Agentic Memory - Persistent, searchable memory for coding agents.

Memories are stored in SQLite with a trigger-synchronized FTS5 index and
can additionally be ranked by semantic similarity using a local model,
the OpenAI API or an Ollama server.
"""

from .config import (
    EmbeddingsConfig,
    MemoryConfig,
    PrivacyConfig,
    load_config,
)
from .embeddings import (
    EmbeddingGenerator,
    EmbeddingProvider,
    EmbeddingProviderFactory,
    combine_for_embedding,
)
from .errors import (
    ConfigurationError,
    ConstraintViolationError,
    EmbeddingCancelledError,
    EmbeddingError,
    EmbeddingProviderError,
    MemorySystemError,
    MemoryValidationError,
    SchemaError,
    StorageError,
)
from .manager import MemoryManager
from .privacy import PrivacyFilter
from .storage import MemoryStore, SchemaManager, VectorStore
from .types import (
    HybridWeight,
    MatchType,
    Memory,
    MemoryInput,
    MemoryStats,
    MemoryType,
    MemoryUpdate,
    RawEvent,
    RawEventType,
    SearchOptions,
    SearchResult,
    Visibility,
    normalize_importance,
)

__version__ = "0.1.0"

__all__ = [
    # Facade
    "MemoryManager",
    # Storage
    "MemoryStore",
    "SchemaManager",
    "VectorStore",
    # Embeddings
    "EmbeddingProvider",
    "EmbeddingProviderFactory",
    "EmbeddingGenerator",
    "combine_for_embedding",
    # Configuration
    "MemoryConfig",
    "EmbeddingsConfig",
    "PrivacyConfig",
    "load_config",
    "PrivacyFilter",
    # Types
    "Memory",
    "MemoryInput",
    "MemoryUpdate",
    "MemoryType",
    "Visibility",
    "MatchType",
    "HybridWeight",
    "SearchOptions",
    "SearchResult",
    "MemoryStats",
    "RawEvent",
    "RawEventType",
    "normalize_importance",
    # Errors
    "MemorySystemError",
    "MemoryValidationError",
    "ConfigurationError",
    "StorageError",
    "ConstraintViolationError",
    "SchemaError",
    "EmbeddingError",
    "EmbeddingProviderError",
    "EmbeddingCancelledError",
]
