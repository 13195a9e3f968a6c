"""Data models for the transport layer."""

from .capabilities import TransportCapabilities, get_gemini_capabilities, get_openai_capabilities
from .common import (
    CleanupReport,
    Degraded,
    Fatal,
    FileState,
    GenerationRequest,
    Ok,
    PrepareResult,
    PromptCacheHandle,
    RemoteFileHandle,
    StreamChunk,
    StreamingTurn,
    TokenUsage,
    format_remaining_time,
)

__all__ = [
    "TransportCapabilities",
    "get_gemini_capabilities",
    "get_openai_capabilities",
    "CleanupReport",
    "Degraded",
    "Fatal",
    "FileState",
    "GenerationRequest",
    "Ok",
    "PrepareResult",
    "PromptCacheHandle",
    "RemoteFileHandle",
    "StreamChunk",
    "StreamingTurn",
    "TokenUsage",
    "format_remaining_time",
]
