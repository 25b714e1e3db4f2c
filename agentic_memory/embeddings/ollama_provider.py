"""
Ollama Provider - Embeddings from a local Ollama server.

This provider keeps embedding generation on the local network, providing
privacy-preserving semantic search without API costs.
"""

import logging
import os
import threading
from typing import List, Optional, Sequence

import httpx

from ..config import EmbeddingsConfig
from .base import EmbeddingProvider, EmbeddingProviderError, truncate_text


logger = logging.getLogger(__name__)


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Ollama embeddings provider.

    Texts are embedded one request at a time, sequentially.

    Example:
        >>> provider = EmbeddingProviderFactory.create(
        ...     "ollama", model="nomic-embed-text", dimensions=768,
        ... )
        >>> vector = provider.generate("JWT refresh tokens")
    """

    DEFAULT_MODEL = "nomic-embed-text"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(
        self,
        config: EmbeddingsConfig,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the Ollama provider.

        Args:
            config: Embedding configuration. The base URL falls back to the
                OLLAMA_HOST environment variable, then localhost.
            client: HTTP client to use instead of creating one
        """
        super().__init__(config)

        self.base_url = (
            config.base_url
            or os.environ.get("OLLAMA_HOST")
            or self.DEFAULT_BASE_URL
        ).rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
            self._owns_client = True
        return self._client

    def _initialize(self) -> None:
        """
        Probe the server.

        A server that is down at startup may come up later, so failures
        are logged and requests are still attempted.
        """
        try:
            response = self._get_client().get(f"{self.base_url}/api/tags")
            if not response.is_success:
                logger.warning(
                    f"Ollama at {self.base_url} answered HTTP {response.status_code}"
                )
        except httpx.HTTPError as e:
            logger.warning(
                f"Ollama not responding at {self.base_url}. "
                f"Make sure Ollama is running: {e}"
            )

    def generate(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """
        Generate an embedding for a single text.

        Raises:
            EmbeddingProviderError: If the server answers with a non-2xx
                status or cannot be reached
            EmbeddingCancelledError: If cancel_event is set before the call
        """
        self._check_cancelled(cancel_event)
        self.initialize()

        payload = {
            "model": self.model_name,
            "input": truncate_text(text),
            "truncate": True,
        }

        try:
            response = self._get_client().post(f"{self.base_url}/api/embed", json=payload)
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(
                f"Could not connect to Ollama at {self.base_url}: {e}"
            ) from e

        if not response.is_success:
            raise EmbeddingProviderError(
                f"Ollama API error: HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            vector = response.json()["embeddings"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError(
                f"Unexpected Ollama response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

        return self._fit_dimensions(vector)

    def generate_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """Generate embeddings for multiple texts, one request each."""
        return [self.generate(text, cancel_event=cancel_event) for text in texts]

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        super().close()
