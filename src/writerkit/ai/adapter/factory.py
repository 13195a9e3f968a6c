"""Factory for creating model transport adapters."""

from typing import Dict, List, Optional, Type

from .base import BaseTransportAdapter
from .gemini_adapter import GeminiAdapter
from .openai_adapter import OpenAIAdapter
from ...core.errors import ConfigurationError
from ...core.models import Config


class AdapterFactory:
    """Factory for creating and managing transport adapter instances."""

    # Registry of available adapter classes
    _adapters: Dict[str, Type[BaseTransportAdapter]] = {
        "gemini": GeminiAdapter,
        "openai": OpenAIAdapter,
    }

    @classmethod
    def register_adapter(cls, provider: str, adapter_class: Type[BaseTransportAdapter]):
        """Register a new adapter type."""
        cls._adapters[provider] = adapter_class

    @classmethod
    def get_provider_for_model(cls, model: str) -> str:
        """Determine the appropriate provider for a given model."""
        model_name = model.lower()

        if any(name in model_name for name in ["gpt-", "o3", "o4"]):
            return "openai"

        # Gemini and Gemma models through the Gemini API
        return "gemini"

    @classmethod
    def create_adapter(
        cls,
        model: str,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        **kwargs
    ) -> BaseTransportAdapter:
        """Create an adapter instance for the given model and provider.

        Raises:
            ConfigurationError: If the provider is unknown or credentials are missing
        """
        if provider is None:
            provider = cls.get_provider_for_model(model)

        if provider not in cls._adapters:
            available = ", ".join(cls._adapters.keys())
            raise ConfigurationError(f"Unsupported provider '{provider}'. Available: {available}")

        adapter_class = cls._adapters[provider]
        try:
            return adapter_class(model=model, api_key=api_key, **kwargs)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def from_config(cls, config: Config) -> BaseTransportAdapter:
        """Create the adapter described by a :class:`Config`."""
        return cls.create_adapter(
            model=config.model_name,
            provider=config.provider,
            api_key=config.api_key or None,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
        )

    @classmethod
    def get_available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._adapters.keys())
