"""Model transport adapters."""

from .base import BaseTransportAdapter
from .factory import AdapterFactory
from .gemini_adapter import GeminiAdapter
from .openai_adapter import OpenAIAdapter
from ..models.capabilities import TransportCapabilities

__all__ = [
    "BaseTransportAdapter",
    "AdapterFactory",
    "GeminiAdapter",
    "OpenAIAdapter",
    "TransportCapabilities",
]
