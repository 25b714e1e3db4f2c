"""
Local Provider - In-process embeddings with sentence-transformers.

Runs entirely on the local machine: no API key and no network access once
the model has been downloaded.
"""

import logging
import threading
from typing import List, Optional, Sequence

from ..config import EmbeddingsConfig
from .base import EmbeddingError, EmbeddingProvider, truncate_text


logger = logging.getLogger(__name__)


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Sentence-transformers based embedding provider.

    The model is loaded lazily on initialize() (or the first request).
    Requires the optional sentence-transformers dependency:

        pip install agentic-memory[local]
    """

    # Small, fast model producing 384-dimensional vectors
    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, config: EmbeddingsConfig):
        super().__init__(config)
        self._model = None

    def _initialize(self) -> None:
        """Load the sentence-transformers model."""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise EmbeddingError(
                "sentence-transformers not installed. "
                "Install with: pip install agentic-memory[local]"
            ) from e

        try:
            self._model = SentenceTransformer(self.model_name)
        except Exception as e:
            raise EmbeddingError(
                f"Failed to load embedding model {self.model_name}: {e}"
            ) from e

        logger.info(f"Loaded embedding model: {self.model_name}")

    def generate(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """Generate an embedding using sentence-transformers."""
        return self.generate_batch([text], cancel_event=cancel_event)[0]

    def generate_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single encode pass.

        Each output row is cut to the configured dimension.
        """
        if not texts:
            return []

        self._check_cancelled(cancel_event)
        self.initialize()

        embeddings = self._model.encode(
            [truncate_text(text) for text in texts],
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return [self._fit_dimensions(row.tolist()) for row in embeddings]

    def close(self) -> None:
        """Drop the loaded model."""
        self._model = None
        super().close()
