"""
OpenAI Provider - Embeddings from the OpenAI embeddings API.
"""

import logging
import os
import threading
from typing import List, Optional, Sequence

import httpx

from ..config import EmbeddingsConfig
from ..errors import ConfigurationError
from .base import (
    EmbeddingError,
    EmbeddingProvider,
    EmbeddingProviderError,
    truncate_text,
)


logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI embeddings API provider.

    Sends one request per batch and asks the API for vectors of the
    configured dimension directly.

    Example:
        >>> from agentic_memory.embeddings import EmbeddingProviderFactory
        >>> provider = EmbeddingProviderFactory.create("openai", api_key="sk-...")
        >>> vector = provider.generate("JWT refresh tokens")
    """

    DEFAULT_MODEL = "text-embedding-3-small"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(
        self,
        config: EmbeddingsConfig,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the OpenAI provider.

        Args:
            config: Embedding configuration. The API key falls back to the
                OPENAI_API_KEY environment variable.
            client: HTTP client to use instead of creating one

        Raises:
            ConfigurationError: If no API key is available
        """
        super().__init__(config)

        self.api_key = config.api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ConfigurationError(
                "OpenAI API key required for the openai embedding provider. "
                "Set OPENAI_API_KEY or embeddings.api_key."
            )

        self.base_url = (config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
            self._owns_client = True
        return self._client

    def generate(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """Generate an embedding for a single text."""
        return self.generate_batch([text], cancel_event=cancel_event)[0]

    def generate_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for multiple texts with one API call.

        Raises:
            EmbeddingProviderError: If the API answers with a non-2xx status
                or cannot be reached
            EmbeddingCancelledError: If cancel_event is set before the call
        """
        if not texts:
            return []

        self._check_cancelled(cancel_event)
        self.initialize()

        payload = {
            "model": self.model_name,
            "input": [truncate_text(text) for text in texts],
            "dimensions": self.dimensions,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = self._get_client().post(
                f"{self.base_url}/embeddings",
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(
                f"Could not reach OpenAI at {self.base_url}: {e}"
            ) from e

        if not response.is_success:
            raise EmbeddingProviderError(
                f"OpenAI API error: HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in data]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingProviderError(
                f"Unexpected OpenAI response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"OpenAI returned {len(vectors)} embeddings for {len(texts)} inputs"
            )

        return [self._fit_dimensions(vector) for vector in vectors]

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        super().close()
