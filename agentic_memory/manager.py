"""
Memory Manager - High-level interface for the memory system.

Provides a simple API for storing, retrieving and searching memories with
automatic embedding generation and hybrid (lexical + semantic) ranking.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .config import MemoryConfig
from .embeddings import EmbeddingGenerator
from .errors import (
    ConfigurationError,
    ConstraintViolationError,
    EmbeddingCancelledError,
    EmbeddingError,
)
from .privacy import PrivacyFilter
from .storage import MemoryStore, VectorStore
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
    normalize_importance,
    validate_memory_input,
    validate_memory_update,
)


logger = logging.getLogger(__name__)


Distiller = Callable[[RawEvent], Optional[MemoryInput]]


class MemoryManager:
    """
    High-level memory management interface.

    Every write goes through validation and privacy sanitization before
    it reaches the store. When embeddings are enabled, each saved memory
    is also embedded and indexed for semantic search; embedding failures
    leave the memory lexically searchable unless embeddings are required.

    Example usage:
        # Create manager
        manager = MemoryManager(MemoryConfig(db_path="/tmp/memory.db"))

        # Record a decision
        manager.save(MemoryInput(
            type=MemoryType.DECISION,
            title="Use JWT for auth",
            content="Chosen over sessions for the stateless API",
            importance=8,
        ))

        # Find relevant memories
        results = manager.search(SearchOptions(query="auth"))

        # Apply retention policy
        manager.run_maintenance()
    """

    # Upper bound on results per search
    MAX_SEARCH_LIMIT = 50

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        store: Optional[MemoryStore] = None,
        generator: Optional[EmbeddingGenerator] = None,
        distiller: Optional[Distiller] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the memory manager.

        Args:
            config: Memory configuration. Defaults to MemoryConfig().
            store: Storage backend. Defaults to a MemoryStore at the
                configured database path.
            generator: Embedding generator. Defaults to one built from the
                embeddings configuration when embeddings are enabled.
            distiller: Turns raw activity events into memory inputs.
            clock: Time source for the default store (Unix seconds).

        Raises:
            ConfigurationError: If embeddings are required but the
                configured provider cannot be built
        """
        self.config = config or MemoryConfig()
        self._owns_store = store is None
        self._store = store or MemoryStore(self.config.resolved_db_path(), clock=clock)
        self._privacy = PrivacyFilter(self.config.privacy)
        self._distiller = distiller
        self._embeddings_disabled = False

        embeddings_config = self.config.embeddings
        self._generator: Optional[EmbeddingGenerator] = generator
        if self._generator is None and embeddings_config.enabled:
            try:
                self._generator = EmbeddingGenerator(embeddings_config)
            except ConfigurationError as e:
                if embeddings_config.required:
                    raise
                logger.warning(f"Embeddings disabled: {e}")

        self._vectors: Optional[VectorStore] = None
        if self._generator is not None:
            self._vectors = VectorStore(self._store, self._generator.dimensions)

    @property
    def store(self) -> MemoryStore:
        """Get the storage backend."""
        return self._store

    @property
    def vectors(self) -> Optional[VectorStore]:
        """Get the vector index, or None when embeddings are off."""
        return self._vectors

    @property
    def generator(self) -> Optional[EmbeddingGenerator]:
        return self._generator

    @property
    def privacy(self) -> PrivacyFilter:
        return self._privacy

    @property
    def embeddings_enabled(self) -> bool:
        """Check if semantic search is currently available."""
        return self._generator is not None and not self._embeddings_disabled

    def _ensure_embeddings(self) -> bool:
        """
        Make sure the embedding provider is ready.

        In best-effort mode a provider that cannot start disables semantic
        features for this manager, with a single warning.
        """
        if not self.embeddings_enabled:
            return False

        try:
            self._generator.initialize()
        except EmbeddingError as e:
            if self.config.embeddings.required:
                raise
            self._embeddings_disabled = True
            logger.warning(
                f"Embedding provider unavailable, using full-text search only: {e}"
            )
            return False
        return True

    def _embed_and_store(
        self,
        memory: Memory,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Embed a memory and persist its vector. Returns True on success."""
        if not self._ensure_embeddings():
            return False

        try:
            vector = self._generator.embed_memory(memory, cancel_event=cancel_event)
            self._vectors.store_embedding(memory.id, vector)
        except EmbeddingCancelledError:
            logger.info(f"Embedding cancelled for memory {memory.id}, left pending")
            return False
        except ConstraintViolationError:
            logger.debug(f"Memory {memory.id} was deleted before its embedding was stored")
            return False
        except (EmbeddingError, ValueError) as e:
            if self.config.embeddings.required:
                raise
            logger.warning(f"Failed to embed memory {memory.id}: {e}")
            return False
        return True

    # ========== Core Memory Operations ==========

    def save(
        self,
        memory_input: MemoryInput,
        cancel_event: Optional[threading.Event] = None,
    ) -> Memory:
        """
        Validate, sanitize and store a new memory.

        Args:
            memory_input: The memory to save
            cancel_event: Set to abandon embedding generation; the memory
                is still saved and stays lexically searchable

        Returns:
            The persisted memory

        Raises:
            MemoryValidationError: If the input is malformed (nothing is written)
            EmbeddingError: If embeddings are required and generation fails
                (the memory row is kept)
        """
        memory_input = validate_memory_input(memory_input)
        memory_input = self._privacy.sanitize_input(memory_input)

        memory = self._store.create(memory_input)
        self._embed_and_store(memory, cancel_event)

        logger.debug(f"Saved {memory.type.value} memory {memory.id}: {memory.title}")
        return memory

    def save_batch(
        self,
        inputs: Sequence[MemoryInput],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Memory]:
        """
        Save several memories atomically.

        Every input is validated before anything is written; one invalid
        input rejects the whole batch.

        Returns:
            The persisted memories, in input order
        """
        validated = [
            self._privacy.sanitize_input(validate_memory_input(memory_input))
            for memory_input in inputs
        ]
        if not validated:
            return []

        memories = self._store.create_batch(validated)

        if self._ensure_embeddings():
            try:
                vectors = self._generator.embed_memories(memories, cancel_event=cancel_event)
                self._vectors.store_batch(
                    [(memory.id, vector) for memory, vector in zip(memories, vectors)]
                )
            except EmbeddingCancelledError:
                logger.info(f"Embedding cancelled for batch of {len(memories)} memories")
            except (EmbeddingError, ValueError) as e:
                if self.config.embeddings.required:
                    raise
                logger.warning(f"Failed to embed batch of {len(memories)} memories: {e}")

        logger.info(f"Saved batch of {len(memories)} memories")
        return memories

    def get_by_id(self, memory_id: int) -> Optional[Memory]:
        """Get a memory by id, recording the access."""
        return self._store.get_by_id(memory_id)

    def get_recent(
        self,
        limit: int = 10,
        types: Optional[Sequence[MemoryType]] = None,
        include_private: bool = False,
    ) -> List[Memory]:
        """Get the newest memories."""
        return self._store.get_recent(limit, types=types, include_private=include_private)

    def get_by_concepts(self, concepts: Sequence[str], limit: int = 10) -> List[Memory]:
        return self._store.get_by_concepts(concepts, limit)

    def get_by_phase(self, phase: str, limit: int = 10) -> List[Memory]:
        return self._store.get_by_phase(phase, limit)

    def get_by_session(self, session_id: str) -> List[Memory]:
        return self._store.get_by_session(session_id)

    def count(
        self,
        types: Optional[Sequence[MemoryType]] = None,
        include_private: bool = False,
    ) -> int:
        return self._store.count(types=types, include_private=include_private)

    def update(
        self,
        memory_id: int,
        updates: MemoryUpdate,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Memory]:
        """
        Apply a partial update.

        The embedding is recomputed when title, content, facts or
        concepts actually change.

        Returns:
            The updated memory, or None if not found
        """
        updates = validate_memory_update(updates)
        if self._privacy.enabled:
            updates.title = updates.title and self._privacy.sanitize(updates.title)
            updates.content = updates.content and self._privacy.sanitize(updates.content)
            if updates.facts is not None:
                updates.facts = [self._privacy.sanitize(fact) for fact in updates.facts]

        before = self._store.peek(memory_id)
        if before is None:
            return None

        memory = self._store.update(memory_id, updates)
        if memory is None:
            return None

        if memory.embedding_fields_differ(before):
            self._embed_and_store(memory, cancel_event)

        return memory

    def delete(self, memory_id: int) -> bool:
        """
        Delete a memory and its embedding.

        Returns:
            True if the memory was deleted, False if not found
        """
        return self._store.delete(memory_id)

    # ========== Search ==========

    def search(
        self,
        options: Union[SearchOptions, str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Search memories with full-text and, when available, semantic ranking.

        Each retrieval path fetches twice the requested limit. Results found
        by both are merged by id with score
        `fts_weight * (fts_score / best_fts_score) + vector_weight * similarity`.

        Args:
            options: Search options, or a bare query string
            cancel_event: Set to skip the semantic part of the search

        Returns:
            Up to `limit` results, best first, each tagged with how it
            was found
        """
        if isinstance(options, str):
            options = SearchOptions(query=options)

        limit = max(1, min(options.limit, self.MAX_SEARCH_LIMIT))
        if not options.query or not options.query.strip():
            return []

        filters: Dict[str, Any] = {
            "types": options.types,
            "min_importance": options.min_importance,
            "include_private": options.include_private,
            "phase": options.phase,
            "concepts": options.concepts,
        }

        fts_results = self._store.search_fts(options.query, limit * 2, **filters)
        vector_hits = self._search_vectors(options.query, limit * 2, filters, cancel_event)

        weight = options.hybrid_weight or HybridWeight()
        return self._merge(fts_results, vector_hits, weight)[:limit]

    def _search_vectors(
        self,
        query: str,
        limit: int,
        filters: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> List[Tuple[int, float]]:
        if not self._ensure_embeddings():
            return []

        try:
            query_vector = self._generator.generate(query, cancel_event=cancel_event)
            return self._vectors.search_similar(query_vector, limit, **filters)
        except (EmbeddingError, ValueError) as e:
            logger.warning(f"Semantic search unavailable, using full-text results only: {e}")
            return []

    def _merge(
        self,
        fts_results: List[SearchResult],
        vector_hits: List[Tuple[int, float]],
        weight: HybridWeight,
    ) -> List[SearchResult]:
        """Blend lexical and semantic hits into one ranking."""
        best_fts = max((result.score for result in fts_results), default=0.0)

        merged: Dict[int, SearchResult] = {}
        for result in fts_results:
            normalized = result.score / best_fts if best_fts > 0 else 1.0
            merged[result.memory.id] = SearchResult(
                memory=result.memory,
                score=weight.fts * normalized,
                match_type=MatchType.FTS,
                highlighted=result.highlighted,
            )

        # Vector-only hits are loaded without recording an access
        missing = [memory_id for memory_id, _ in vector_hits if memory_id not in merged]
        loaded = self._store.get_many(missing)

        for memory_id, similarity in vector_hits:
            if memory_id in merged:
                result = merged[memory_id]
                result.score += weight.vector * similarity
                result.match_type = MatchType.HYBRID
            elif memory_id in loaded:
                merged[memory_id] = SearchResult(
                    memory=loaded[memory_id],
                    score=weight.vector * similarity,
                    match_type=MatchType.VECTOR,
                )

        return sorted(merged.values(), key=lambda r: (-r.score, r.memory.id))

    # ========== Distillation ==========

    def distill(self, event: RawEvent) -> Optional[Memory]:
        """
        Turn a raw activity event into a stored memory.

        Delegates to the configured distiller. Events are ignored when no
        distiller is configured, when the capture settings exclude the
        event, or when the distilled memory falls below the capture
        importance threshold.

        Returns:
            The saved memory, or None if nothing was stored
        """
        if self._distiller is None or not self._should_capture(event):
            return None

        memory_input = self._distiller(event)
        if memory_input is None:
            return None

        importance = normalize_importance(memory_input.importance)
        if importance < self.config.capture.min_importance_threshold:
            logger.debug(
                f"Skipping distilled {event.type.value} event below importance "
                f"threshold ({importance})"
            )
            return None

        if memory_input.session_id is None:
            memory_input.session_id = event.session_id
        return self.save(memory_input)

    def _should_capture(self, event: RawEvent) -> bool:
        """Check an event against the capture settings."""
        capture = self.config.capture
        if not self.config.enabled or not capture.enabled:
            return False

        if event.type == RawEventType.TOOL_USE:
            return capture.capture_tool_use and event.data.get("tool") not in capture.skip_tools
        if event.type in (RawEventType.USER_MESSAGE, RawEventType.ASSISTANT_MESSAGE):
            return capture.capture_messages
        if event.type == RawEventType.PHASE_CHANGE:
            return capture.capture_phase_changes
        return False

    # ========== Maintenance ==========

    def backfill_embeddings(
        self,
        limit: int = 100,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Embed memories whose embedding is still pending.

        Returns:
            Number of embeddings stored
        """
        if not self._ensure_embeddings():
            return 0

        memory_ids = self._vectors.find_missing_embeddings(limit)
        if not memory_ids:
            return 0

        loaded = self._store.get_many(memory_ids)
        memories = [loaded[memory_id] for memory_id in memory_ids if memory_id in loaded]

        try:
            vectors = self._generator.embed_memories(memories, cancel_event=cancel_event)
        except EmbeddingCancelledError:
            logger.info("Embedding backfill cancelled")
            return 0

        stored = self._vectors.store_batch(
            [(memory.id, vector) for memory, vector in zip(memories, vectors)]
        )
        logger.info(f"Backfilled {stored} embeddings")
        return stored

    def run_maintenance(self) -> Dict[str, Any]:
        """
        Apply the retention policy and compact the full-text index.

        Returns:
            Deletion counts and reasons per policy
        """
        results = self._privacy.run_maintenance(self._store)
        self._store.optimize()
        return {name: result.to_dict() for name, result in results.items()}

    def optimize(self) -> None:
        self._store.optimize()

    def rebuild_index(self) -> None:
        self._store.rebuild_index()

    def check_index(self) -> bool:
        return self._store.check_index()

    def get_stats(self) -> MemoryStats:
        """Get memory usage statistics."""
        return self._store.get_stats()

    def export_memories(self, file_path: str) -> int:
        """
        Export all memories (including private ones) to a JSON file.

        Returns:
            Number of memories exported
        """
        memories = self._store.export_all()
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(memories, f, indent=2)

        logger.info(f"Exported {len(memories)} memories to {file_path}")
        return len(memories)

    def import_memories(self, file_path: str) -> int:
        """
        Import memories from a JSON file written by export_memories.

        Imported memories get new ids and timestamps.

        Returns:
            Number of memories imported
        """
        with open(file_path, "r") as f:
            data = json.load(f)

        inputs = [MemoryInput.from_dict(item) for item in data]
        memories = self.save_batch(inputs)

        logger.info(f"Imported {len(memories)} memories from {file_path}")
        return len(memories)

    def close(self) -> None:
        """Close the embedding provider and, if owned, the store."""
        if self._generator is not None:
            self._generator.close()
        if self._owns_store:
            self._store.close()

    def __enter__(self) -> "MemoryManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
