"""
Embedding Module - Provides abstraction for multiple embedding backends.

This module provides a unified interface for generating vector embeddings
with a local sentence-transformers model, the OpenAI API or an Ollama
server.
"""

from .base import (
    MAX_EMBEDDING_CHARS,
    EmbeddingCancelledError,
    EmbeddingError,
    EmbeddingProvider,
    EmbeddingProviderError,
)
from .factory import EmbeddingProviderFactory
from .generator import EmbeddingGenerator, combine_for_embedding
from .local_provider import LocalEmbeddingProvider
from .ollama_provider import OllamaEmbeddingProvider
from .openai_provider import OpenAIEmbeddingProvider

__all__ = [
    # Core classes
    "EmbeddingProvider",
    "EmbeddingGenerator",
    "EmbeddingProviderFactory",
    "combine_for_embedding",
    "MAX_EMBEDDING_CHARS",
    # Providers
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "OllamaEmbeddingProvider",
    # Errors
    "EmbeddingError",
    "EmbeddingProviderError",
    "EmbeddingCancelledError",
]
