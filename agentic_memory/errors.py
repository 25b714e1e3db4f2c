"""
Exception hierarchy for the memory system.

Not-found is never an error: id-keyed lookups return None (or False for
delete). Everything below is raised for genuinely failed operations.
"""

from typing import Optional


class MemorySystemError(Exception):
    """Base exception for memory system errors."""
    pass


class MemoryValidationError(MemorySystemError):
    """Raised when memory input is malformed, before anything is written."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConfigurationError(MemorySystemError):
    """Raised when configuration is missing or invalid."""
    pass


class StorageError(MemorySystemError):
    """Raised when the storage engine fails an operation."""

    def __init__(self, message: str, operation: Optional[str] = None):
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)
        self.operation = operation


class ConstraintViolationError(StorageError):
    """Raised when a write violates a schema constraint."""
    pass


class SchemaError(StorageError):
    """Raised when the on-disk schema cannot be opened or migrated."""
    pass


class EmbeddingError(MemorySystemError):
    """Base exception for embedding-related errors."""
    pass


class EmbeddingProviderError(EmbeddingError):
    """Raised when a remote embedding backend answers with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmbeddingCancelledError(EmbeddingError):
    """Raised when the caller cancels an embedding request."""
    pass
