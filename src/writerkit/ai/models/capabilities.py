"""Transport capabilities model for model adapters."""

from dataclasses import dataclass
from typing import List


@dataclass
class TransportCapabilities:
    """Defines what a model transport can do.

    The resource registry consults these flags instead of probing the client
    object; an unsupported operation becomes a degraded step, not an error.
    """

    # File operations
    supports_file_listing: bool
    supports_file_upload: bool
    supports_file_deletion: bool

    # Prompt cache operations
    supports_cache_listing: bool
    supports_cache_creation: bool
    supports_cache_deletion: bool

    # An uploaded text file can be attached to a generation request by reference
    supports_file_reference: bool = True

    # Generation
    supports_token_counting: bool = True
    supports_streaming: bool = True
    supports_native_thinking: bool = False
    max_context_length: int = 128000

    @property
    def supports_caching(self) -> bool:
        return self.supports_cache_listing and self.supports_cache_creation

    def missing(self) -> List[str]:
        """Names of unsupported operations, for status messages."""
        return [name for name, value in vars(self).items()
                if name.startswith("supports_") and value is False]


def get_gemini_capabilities(model: str = "gemini-2.5-pro") -> TransportCapabilities:
    """Get capabilities for Gemini models."""
    capabilities = TransportCapabilities(
        supports_file_listing=True,
        supports_file_upload=True,
        supports_file_deletion=True,
        supports_cache_listing=True,
        supports_cache_creation=True,
        supports_cache_deletion=True,
        max_context_length=1048576,
    )

    # 2.5 models can return thought parts tagged by the service
    if "2.5" in model:
        capabilities.supports_native_thinking = True

    # Explicit caching is not offered for every model family
    if "gemma" in model.lower():
        capabilities.supports_cache_creation = False
        capabilities.max_context_length = 128000

    return capabilities


def get_openai_capabilities(model: str = "gpt-4o") -> TransportCapabilities:
    """Get capabilities for OpenAI models.

    OpenAI hosts uploaded files but has no explicit prompt cache API, and
    token counting happens locally with tiktoken. Chat file inputs accept
    PDFs only, so a plain-text manuscript is sent inline rather than by
    file reference.
    """
    capabilities = TransportCapabilities(
        supports_file_listing=True,
        supports_file_upload=True,
        supports_file_deletion=True,
        supports_cache_listing=False,
        supports_cache_creation=False,
        supports_cache_deletion=False,
        supports_file_reference=False,
        max_context_length=128000,
    )

    if "gpt-3.5" in model.lower():
        capabilities.max_context_length = 16385

    return capabilities
