"""Core components for writerkit."""

from .errors import (
    ConfigurationError,
    RequiredInputMissing,
    StreamCancelled,
    TransportError,
    UnknownToolError,
    WriterKitError,
)
from .models import Config, SessionFileRecord, ToolResult, ToolStats
from .prompts import PromptStore
from .session_files import SessionFileRegistry
from .tokenizer import TokenCounter, count_words
from .tools import TOOL_CATALOGUE, ToolDefinition, ToolInput, get_tool, list_tools

__all__ = [
    "Config",
    "ToolResult",
    "ToolStats",
    "SessionFileRecord",
    "SessionFileRegistry",
    "PromptStore",
    "TokenCounter",
    "count_words",
    "TOOL_CATALOGUE",
    "ToolDefinition",
    "ToolInput",
    "get_tool",
    "list_tools",
    "WriterKitError",
    "ConfigurationError",
    "RequiredInputMissing",
    "UnknownToolError",
    "TransportError",
    "StreamCancelled",
]
