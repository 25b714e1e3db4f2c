"""
Embedding generator.

Turns memories into the text that feeds an embedding backend and drives
the configured provider.
"""

import logging
import threading
from typing import List, Optional, Sequence

from ..config import EmbeddingsConfig
from ..types import Memory
from .base import EmbeddingProvider, truncate_text
from .factory import EmbeddingProviderFactory


logger = logging.getLogger(__name__)


def combine_for_embedding(
    title: str,
    content: str,
    facts: Optional[Sequence[str]] = None,
    concepts: Optional[Sequence[str]] = None,
) -> str:
    """
    Combine memory fields into the text that is embedded.

    Example:
        >>> combine_for_embedding("Auth", "JWT chosen", ["24h TTL"], ["auth", "jwt"])
        'Auth\\n\\nJWT chosen\\n\\nFacts: 24h TTL\\n\\nTags: auth, jwt'
    """
    parts = [title, content]
    if facts:
        parts.append("Facts: " + "; ".join(facts))
    if concepts:
        parts.append("Tags: " + ", ".join(concepts))
    return "\n\n".join(parts)


class EmbeddingGenerator:
    """
    Generates embeddings through a pluggable provider.

    The provider is initialized on first use. Texts are truncated to the
    maximum backend input before they are sent.
    """

    def __init__(
        self,
        config: Optional[EmbeddingsConfig] = None,
        provider: Optional[EmbeddingProvider] = None,
    ):
        """
        Args:
            config: Embedding configuration used to build the provider
            provider: Ready-made provider; takes precedence over config

        Raises:
            ConfigurationError: If the configured provider is unknown or
                missing required settings
        """
        self.config = config or EmbeddingsConfig()
        self.provider = provider or EmbeddingProviderFactory.create_from_config(self.config)
        self._lock = threading.Lock()

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    def get_dimensions(self) -> int:
        return self.provider.get_dimensions()

    @property
    def provider_name(self) -> str:
        return self.config.provider

    def initialize(self) -> None:
        """Initialize the provider. Safe to call more than once."""
        with self._lock:
            if not self.provider.is_initialized:
                self.provider.initialize()
                logger.debug(
                    f"Initialized {self.provider.__class__.__name__} "
                    f"({self.provider.model_name}, {self.dimensions} dimensions)"
                )

    def generate(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """Generate an embedding for a single text."""
        self.initialize()
        return self.provider.generate(truncate_text(text), cancel_event=cancel_event)

    def generate_batch(
        self,
        texts: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Empty texts are dropped, so the result can be shorter than the
        input. An input with no non-empty text returns [] without calling
        the provider.
        """
        processed = [truncate_text(text) for text in texts if text]
        if not processed:
            return []

        self.initialize()
        return self.provider.generate_batch(processed, cancel_event=cancel_event)

    def embed_memory(
        self,
        memory: Memory,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[float]:
        """Generate the embedding for a memory's combined text."""
        text = combine_for_embedding(
            memory.title, memory.content, memory.facts, memory.concepts
        )
        return self.generate(text, cancel_event=cancel_event)

    def embed_memories(
        self,
        memories: Sequence[Memory],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for several memories in one provider batch.

        Returns:
            One vector per memory, in input order
        """
        texts = [
            combine_for_embedding(m.title, m.content, m.facts, m.concepts)
            for m in memories
        ]
        return self.generate_batch(texts, cancel_event=cancel_event)

    def close(self) -> None:
        """Release the provider's resources."""
        self.provider.close()
