"""
Embedding Provider Factory - Factory for creating embedding providers.
"""

from typing import Any, Dict, List, Optional

from ..config import EmbeddingsConfig
from ..errors import ConfigurationError
from .base import EmbeddingProvider
from .local_provider import LocalEmbeddingProvider
from .ollama_provider import OllamaEmbeddingProvider
from .openai_provider import OpenAIEmbeddingProvider


class EmbeddingProviderFactory:
    """Factory for creating embedding providers."""

    # Mapping of provider names to classes
    _providers: Dict[str, type] = {
        "local": LocalEmbeddingProvider,
        "openai": OpenAIEmbeddingProvider,
        "ollama": OllamaEmbeddingProvider,
    }

    @classmethod
    def register_provider(cls, name: str, provider_class: type) -> None:
        """
        Register a custom embedding provider.

        Args:
            name: Provider name.
            provider_class: Provider class that inherits from EmbeddingProvider.
        """
        if not isinstance(provider_class, type) or not issubclass(
            provider_class, EmbeddingProvider
        ):
            raise ValueError("Provider class must inherit from EmbeddingProvider")
        cls._providers[name.lower()] = provider_class

    @classmethod
    def _provider_class(cls, name: str) -> type:
        provider_name = (name or "").lower()
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ConfigurationError(
                f"Unknown embedding provider: {name}. "
                f"Available providers: {available}"
            )
        return cls._providers[provider_name]

    @classmethod
    def create(
        cls,
        provider: str = "local",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        **kwargs: Any,
    ) -> EmbeddingProvider:
        """
        Create an embedding provider instance.

        Args:
            provider: Provider name ("local", "openai", "ollama", ...).
            model: Model name (uses the provider default if not specified).
            api_key: API key for hosted providers.
            **kwargs: Other EmbeddingsConfig fields (dimensions, base_url,
                timeout), plus `client` for HTTP providers.

        Returns:
            Configured, not yet initialized, provider instance.

        Raises:
            ConfigurationError: If the provider is not registered or is
                missing required settings.
        """
        client = kwargs.pop("client", None)
        config = EmbeddingsConfig(
            provider=provider.lower(),
            model=model,
            api_key=api_key,
            **kwargs,
        )
        return cls.create_from_config(config, client=client)

    @classmethod
    def create_from_config(
        cls,
        config: EmbeddingsConfig,
        client: Any = None,
    ) -> EmbeddingProvider:
        """
        Create an embedding provider from a configuration object.

        Args:
            config: Embedding configuration.
            client: Optional HTTP client for HTTP providers.

        Returns:
            Configured provider instance.
        """
        provider_class = cls._provider_class(config.provider)
        if client is not None:
            return provider_class(config, client=client)
        return provider_class(config)

    @classmethod
    def list_providers(cls) -> List[str]:
        """
        List available embedding providers.

        Returns:
            List of provider names.
        """
        return list(cls._providers.keys())
