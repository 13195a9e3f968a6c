"""
Core data models for writerkit.

This module contains the configuration object and the plain records
produced by a tool run: statistics, results and session file entries.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


DEFAULT_MODEL = "gemini-2.5-pro-preview-05-06"
DEFAULT_PROMPTS_DIR = os.path.join("~", "writing", "tool-prompts")

API_KEY_ENV = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Config:
    """Configuration settings for writerkit."""

    provider: str = field(default_factory=lambda: os.getenv('WRITERKIT_PROVIDER', 'gemini'))
    api_key: Optional[str] = None  # Read from the provider's key variable when unset
    model_name: str = field(default_factory=lambda: os.getenv('WRITERKIT_MODEL', DEFAULT_MODEL))

    # Project directory where inputs are resolved and reports are written
    save_dir: Optional[str] = field(default_factory=lambda: os.getenv('WRITERKIT_SAVE_DIR') or None)
    prompts_dir: str = field(default_factory=lambda: os.getenv('WRITERKIT_PROMPTS_DIR', DEFAULT_PROMPTS_DIR))

    # Transport settings
    request_timeout: int = field(default_factory=lambda: _env_int('WRITERKIT_TIMEOUT', 900))  # seconds
    cache_ttl_hours: int = 4
    max_retries: int = 2  # list/create calls only, never a stream
    retry_base_delay: float = 1.0

    enable_thinking: bool = False
    marker_lookback: bool = False  # Detect THINKING:/RESPONSE: split across chunks
    backup_manuscript: bool = False
    debug: bool = False

    def __post_init__(self):
        if self.api_key is None:
            self.api_key = os.getenv(API_KEY_ENV.get(self.provider, 'GEMINI_API_KEY'), '')

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_hours * 3600

    @property
    def resolved_prompts_dir(self) -> Path:
        return Path(os.path.expanduser(self.prompts_dir))


@dataclass
class ToolStats:
    """Statistics gathered for one tool run."""

    prompt_tokens: int = 0
    response_tokens: int = 0
    word_count: int = 0
    elapsed_seconds: float = 0.0
    thinking_chars: int = 0

    @property
    def elapsed_display(self) -> str:
        """Elapsed time as ``Xm S.SSs``."""
        minutes = int(self.elapsed_seconds // 60)
        seconds = self.elapsed_seconds % 60
        return f"{minutes}m {seconds:.2f}s"


@dataclass
class ToolResult:
    """Outcome of executing one tool."""

    success: bool
    tool_name: str
    output_files: List[str] = field(default_factory=list)
    stats: ToolStats = field(default_factory=ToolStats)
    error_type: Optional[Literal['missing_prompt', 'cancelled', 'no_missing_chapter',
                                'document_too_large']] = None
    messages: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        """Plain dict for JSON export to the shell."""
        return {
            'success': self.success,
            'toolName': self.tool_name,
            'outputFiles': list(self.output_files),
            'errorType': self.error_type,
            'stats': {
                'promptTokens': self.stats.prompt_tokens,
                'responseTokens': self.stats.response_tokens,
                'wordCount': self.stats.word_count,
                'elapsedSeconds': round(self.stats.elapsed_seconds, 2),
            },
            'messages': list(self.messages),
            'errors': list(self.errors),
        }


@dataclass(frozen=True)
class SessionFileRecord:
    """A file produced by a tool during the current process."""

    tool_name: str
    path: str
    created_at: datetime = field(default_factory=datetime.now)
