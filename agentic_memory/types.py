"""
Memory type definitions for the memory system.
"""

import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import MemoryValidationError


MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10
DEFAULT_IMPORTANCE = 5


def unix_now() -> int:
    """Get the current time as integer Unix seconds."""
    return int(time.time())


class MemoryType(str, Enum):
    """Types of memories that can be stored."""

    # Distilled facts from tool usage
    OBSERVATION = "observation"

    # Explicit decisions with reasoning
    DECISION = "decision"

    # End-of-session summaries
    SESSION_SUMMARY = "session_summary"

    # Sanitized user intents
    USER_PROMPT = "user_prompt"

    # Quick manual notes
    NOTE = "note"

    # Durable tasks
    TODO = "todo"


class Visibility(str, Enum):
    """Visibility levels for memories."""
    PUBLIC = "public"
    PRIVATE = "private"


class MatchType(str, Enum):
    """How a search result was found."""
    FTS = "fts"
    VECTOR = "vector"
    HYBRID = "hybrid"


def _json_list(value: Any) -> List[str]:
    """Decode a JSON-encoded list column, tolerating NULL."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return list(value)
    return list(json.loads(value))


@dataclass
class Memory:
    """
    A single persisted memory.

    Attributes:
        id: Store-assigned identifier, never reused
        type: Kind of memory, immutable after creation
        title: Short display label
        content: Main searchable body
        facts: Atomic claims extracted from the memory
        concepts: Tags used for filtering and concept retrieval
        source_files: Paths of the artifacts that produced the memory
        importance: Retention priority from 1 to 10
        visibility: Private memories are hidden from default queries
        phase: Optional workflow phase
        session_id: Optional session correlation key
        created_at: Creation time (Unix seconds)
        updated_at: Last content change (Unix seconds)
        accessed_at: Last read by id (Unix seconds)
        access_count: Number of reads by id
    """

    id: int
    type: MemoryType
    title: str
    content: str
    facts: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    source_files: List[str] = field(default_factory=list)
    importance: int = DEFAULT_IMPORTANCE
    visibility: Visibility = Visibility.PUBLIC
    phase: Optional[str] = None
    session_id: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0
    accessed_at: int = 0
    access_count: int = 0

    @classmethod
    def from_row(cls, row: Any) -> "Memory":
        """Create from a row of the memories table."""
        return cls(
            id=row["id"],
            type=MemoryType(row["type"]),
            title=row["title"],
            content=row["content"],
            facts=_json_list(row["facts"]),
            concepts=_json_list(row["concepts"]),
            source_files=_json_list(row["source_files"]),
            importance=row["importance"],
            visibility=Visibility(row["visibility"]),
            phase=row["phase"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accessed_at=row["accessed_at"],
            access_count=row["access_count"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "content": self.content,
            "facts": list(self.facts),
            "concepts": list(self.concepts),
            "source_files": list(self.source_files),
            "importance": self.importance,
            "visibility": self.visibility.value,
            "phase": self.phase,
            "session_id": self.session_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "accessed_at": self.accessed_at,
            "access_count": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memory":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            type=MemoryType(data.get("type", "observation")),
            title=data.get("title", ""),
            content=data.get("content", ""),
            facts=list(data.get("facts") or []),
            concepts=list(data.get("concepts") or []),
            source_files=list(data.get("source_files") or []),
            importance=data.get("importance", DEFAULT_IMPORTANCE),
            visibility=Visibility(data.get("visibility", "public")),
            phase=data.get("phase"),
            session_id=data.get("session_id"),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
            accessed_at=data.get("accessed_at", 0),
            access_count=data.get("access_count", 0),
        )

    def embedding_fields_differ(self, other: "Memory") -> bool:
        """Check whether the text that feeds the embedding has changed."""
        return (
            self.title != other.title
            or self.content != other.content
            or self.facts != other.facts
            or self.concepts != other.concepts
        )


@dataclass
class MemoryInput:
    """Input for creating a new memory."""

    type: MemoryType
    title: str
    content: str
    facts: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    source_files: List[str] = field(default_factory=list)
    importance: Any = DEFAULT_IMPORTANCE
    visibility: Visibility = Visibility.PUBLIC
    phase: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        """Coerce string enum values."""
        if isinstance(self.type, str) and not isinstance(self.type, MemoryType):
            self.type = _coerce_enum(MemoryType, self.type, "type")
        if isinstance(self.visibility, str) and not isinstance(self.visibility, Visibility):
            self.visibility = _coerce_enum(Visibility, self.visibility, "visibility")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryInput":
        """Create from dictionary, accepting exported memories."""
        return cls(
            type=data.get("type", MemoryType.OBSERVATION.value),
            title=data.get("title", ""),
            content=data.get("content", ""),
            facts=list(data.get("facts") or []),
            concepts=list(data.get("concepts") or []),
            source_files=list(data.get("source_files") or []),
            importance=data.get("importance", DEFAULT_IMPORTANCE),
            visibility=data.get("visibility", Visibility.PUBLIC.value),
            phase=data.get("phase"),
            session_id=data.get("session_id"),
        )


@dataclass
class MemoryUpdate:
    """
    Partial update for an existing memory.

    Fields left as None are not changed. Type, id and creation time
    cannot be patched.
    """

    title: Optional[str] = None
    content: Optional[str] = None
    facts: Optional[List[str]] = None
    concepts: Optional[List[str]] = None
    source_files: Optional[List[str]] = None
    importance: Any = None
    visibility: Optional[Visibility] = None

    def __post_init__(self):
        if isinstance(self.visibility, str) and not isinstance(self.visibility, Visibility):
            self.visibility = _coerce_enum(Visibility, self.visibility, "visibility")

    def is_empty(self) -> bool:
        """Check if no field was provided."""
        return all(
            getattr(self, name) is None
            for name in (
                "title", "content", "facts", "concepts",
                "source_files", "importance", "visibility",
            )
        )

    def touches_embedding(self) -> bool:
        """Check if the update changes text that feeds the embedding."""
        return any(
            value is not None
            for value in (self.title, self.content, self.facts, self.concepts)
        )


@dataclass
class HybridWeight:
    """Weights for blending lexical and semantic scores."""
    fts: float = 0.6
    vector: float = 0.4


@dataclass
class SearchOptions:
    """
    Options for searching memories.

    Attributes:
        query: Free-text query
        limit: Maximum number of results (clamped to 1..50)
        types: Restrict to these memory types
        concepts: Restrict to memories tagged with any of these concepts
        min_importance: Minimum importance
        include_private: Whether private memories are searched
        phase: Restrict to a workflow phase
        hybrid_weight: Override for the lexical/semantic blend
    """

    query: str
    limit: int = 10
    types: Optional[List[MemoryType]] = None
    concepts: Optional[List[str]] = None
    min_importance: Optional[int] = None
    include_private: bool = False
    phase: Optional[str] = None
    hybrid_weight: Optional[HybridWeight] = None


@dataclass
class SearchResult:
    """
    Result of a memory search.

    Attributes:
        memory: The matched memory
        score: Relevance score (higher is better)
        match_type: Which method found the memory
        highlighted: Content or title with matched terms marked
    """

    memory: Memory
    score: float = 0.0
    match_type: MatchType = MatchType.FTS
    highlighted: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "memory": self.memory.to_dict(),
            "score": self.score,
            "match_type": self.match_type.value,
            "highlighted": self.highlighted,
        }


class RawEventType(str, Enum):
    """Types of activity events that can be distilled into memories."""
    TOOL_USE = "tool_use"
    USER_MESSAGE = "user_message"
    ASSISTANT_MESSAGE = "assistant_message"
    PHASE_CHANGE = "phase_change"


@dataclass
class RawEvent:
    """A raw activity event handed to the distill hook."""

    type: RawEventType
    timestamp: int
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MemoryStats:
    """Statistics about memory usage."""

    total_memories: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_visibility: Dict[str, int] = field(default_factory=dict)
    oldest_memory: Optional[int] = None
    newest_memory: Optional[int] = None
    total_vectors: int = 0
    total_size_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_memories": self.total_memories,
            "by_type": self.by_type,
            "by_visibility": self.by_visibility,
            "oldest_memory": self.oldest_memory,
            "newest_memory": self.newest_memory,
            "total_vectors": self.total_vectors,
            "total_size_bytes": self.total_size_bytes,
        }


def _coerce_enum(enum_cls, value: str, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise MemoryValidationError(
            f"Invalid {field_name} '{value}'. Expected one of: {allowed}",
            field=field_name,
        )


def normalize_importance(value: Any) -> int:
    """
    Normalize a caller-supplied importance to the 1-10 scale.

    None becomes the default (5). Fractions strictly between 0 and 1 are
    treated as a 0-1 scale and rescaled, so 0.8 becomes 8. Anything else
    must be an integral value in [1, 10].

    Args:
        value: Raw importance value

    Returns:
        Importance as an integer in [1, 10]

    Raises:
        MemoryValidationError: If the value is not a number or is out of range
    """
    if value is None:
        return DEFAULT_IMPORTANCE

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MemoryValidationError(
            f"Importance must be a number, got {value!r}",
            field="importance",
        )

    if 0 < value < 1:
        return max(MIN_IMPORTANCE, int(round(value * 10)))

    if value != int(value):
        raise MemoryValidationError(
            f"Importance must be a whole number between {MIN_IMPORTANCE} "
            f"and {MAX_IMPORTANCE}, got {value}",
            field="importance",
        )

    importance = int(value)
    if importance < MIN_IMPORTANCE or importance > MAX_IMPORTANCE:
        raise MemoryValidationError(
            f"Importance must be between {MIN_IMPORTANCE} and {MAX_IMPORTANCE}, "
            f"got {importance}",
            field="importance",
        )
    return importance


def _validate_string_list(values: Any, field_name: str) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, (list, tuple, set)):
        raise MemoryValidationError(
            f"{field_name} must be a list of strings",
            field=field_name,
        )
    for item in values:
        if not isinstance(item, str):
            raise MemoryValidationError(
                f"{field_name} must contain only strings, got {item!r}",
                field=field_name,
            )
    return list(values)


def validate_memory_input(memory_input: MemoryInput) -> MemoryInput:
    """
    Validate a MemoryInput and return a normalized copy.

    Raises:
        MemoryValidationError: On the first invalid field
    """
    if not isinstance(memory_input.type, MemoryType):
        memory_input.type = _coerce_enum(MemoryType, memory_input.type, "type")
    if not isinstance(memory_input.visibility, Visibility):
        memory_input.visibility = _coerce_enum(
            Visibility, memory_input.visibility, "visibility"
        )

    if not isinstance(memory_input.title, str) or not memory_input.title.strip():
        raise MemoryValidationError("title is required", field="title")
    if not isinstance(memory_input.content, str) or not memory_input.content.strip():
        raise MemoryValidationError("content is required", field="content")

    return replace(
        memory_input,
        facts=_validate_string_list(memory_input.facts, "facts"),
        concepts=_validate_string_list(memory_input.concepts, "concepts"),
        source_files=_validate_string_list(memory_input.source_files, "source_files"),
        importance=normalize_importance(memory_input.importance),
    )


def validate_memory_update(update: MemoryUpdate) -> MemoryUpdate:
    """
    Validate a MemoryUpdate and return a normalized copy.

    Raises:
        MemoryValidationError: On the first invalid field
    """
    if update.title is not None and not update.title.strip():
        raise MemoryValidationError("title cannot be empty", field="title")
    if update.content is not None and not update.content.strip():
        raise MemoryValidationError("content cannot be empty", field="content")

    return replace(
        update,
        facts=None if update.facts is None else _validate_string_list(update.facts, "facts"),
        concepts=None if update.concepts is None else _validate_string_list(update.concepts, "concepts"),
        source_files=(
            None if update.source_files is None
            else _validate_string_list(update.source_files, "source_files")
        ),
        importance=None if update.importance is None else normalize_importance(update.importance),
    )
