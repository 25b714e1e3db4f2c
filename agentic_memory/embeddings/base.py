"""
Base Embedding Provider - Abstract base class and errors for embedding backends.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..config import EmbeddingsConfig
from ..errors import EmbeddingCancelledError, EmbeddingError, EmbeddingProviderError


logger = logging.getLogger(__name__)


# Longest text sent to any backend, in characters
MAX_EMBEDDING_CHARS = 8000

__all__ = [
    "MAX_EMBEDDING_CHARS",
    "EmbeddingProvider",
    "EmbeddingError",
    "EmbeddingProviderError",
    "EmbeddingCancelledError",
    "truncate_text",
]


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Every provider produces vectors of exactly `dimensions` floats. Calls
    are synchronous; a caller-supplied threading.Event cancels work before
    the next backend call.
    """

    # Model used when the configuration does not name one
    DEFAULT_MODEL = ""

    def __init__(self, config: EmbeddingsConfig):
        """
        Initialize the provider.

        Args:
            config: Embedding configuration
        """
        self.config = config
        self.model_name = config.model or self.DEFAULT_MODEL
        self._dimensions = config.dimensions
        self._initialized = False

    @property
    def dimensions(self) -> int:
        """Get the embedding dimension."""
        return self._dimensions

    def get_dimensions(self) -> int:
        return self._dimensions

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Prepare the backend (load a model, probe a server).

        Idempotent. Raises EmbeddingError if the backend cannot be used.
        """
        if self._initialized:
            return
        self._initialize()
        self._initialized = True

    def _initialize(self) -> None:
        """Provider-specific setup; the default needs none."""

    @abstractmethod
    def generate(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """
        Generate an embedding vector for text.

        Args:
            text: The text to embed
            cancel_event: Set to abandon the request

        Returns:
            A list of `dimensions` floats
        """
        pass

    @abstractmethod
    def generate_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Returns:
            One vector per input text, in input order
        """
        pass

    def close(self) -> None:
        """Release any resources held by the provider."""
        self._initialized = False

    def _check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise EmbeddingCancelledError(
                f"{self.__class__.__name__} request cancelled"
            )

    def _fit_dimensions(self, vector: Sequence[float]) -> List[float]:
        """
        Cut a vector down to the configured dimension.

        Raises:
            EmbeddingError: If the backend returned fewer values
        """
        if len(vector) < self._dimensions:
            raise EmbeddingError(
                f"Model {self.model_name} returned {len(vector)} dimensions, "
                f"expected {self._dimensions}"
            )
        return [float(x) for x in vector[:self._dimensions]]

    def __enter__(self) -> "EmbeddingProvider":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def truncate_text(text: str, max_chars: int = MAX_EMBEDDING_CHARS) -> str:
    """Truncate text to the longest input sent to a backend."""
    return text[:max_chars]
