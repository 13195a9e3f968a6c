"""
Local token and word counting for writerkit.

Remote token counts come from the model transport (see
``writerkit.ai.accountant``). This module covers the local side: a tiktoken
based counter used by transports without a counting endpoint, and the
whitespace word count printed after every run.
"""

import logging
import re
from typing import Any, Dict, Optional

import tiktoken

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def count_words(text: str) -> int:
    """Count whitespace-delimited words, ignoring empty pieces."""
    if not text:
        return 0
    return len([word for word in _WHITESPACE.split(text) if word])


class TokenCounter:
    """
    Handles token counting for text content.

    Counting never raises; an encoder that fails to load or encode
    reports 0 tokens, which callers treat as "unknown".
    """

    def __init__(self, encoding_name: str = "cl100k_base", model: Optional[str] = None):
        """
        Initialize the token counter.

        Args:
            encoding_name: The tiktoken encoding to use when ``model`` is unknown.
            model: Optional model name used to pick a model-specific encoding.
        """
        self.encoding_name = encoding_name
        self.encoder: Optional[Any] = None

        try:
            if model:
                try:
                    self.encoder = tiktoken.encoding_for_model(model)
                except KeyError:
                    self.encoder = tiktoken.get_encoding(encoding_name)
            else:
                self.encoder = tiktoken.get_encoding(encoding_name)
        except Exception as e:
            logger.warning(f"Failed to initialize token encoder '{encoding_name}': {e}")

    @property
    def is_available(self) -> bool:
        """Check if token counting is available."""
        return self.encoder is not None

    def count(self, text: str) -> int:
        """
        Count tokens in the given text.

        Returns:
            Number of tokens, or 0 if counting is unavailable.
        """
        if not self.is_available or not text:
            return 0

        try:
            return len(self.encoder.encode(text))
        except Exception as e:
            logger.debug(f"Error counting tokens: {e}")
            return 0

    def count_batch(self, texts: Dict[str, str]) -> Dict[str, int]:
        """Count tokens for several named texts."""
        return {key: self.count(text) for key, text in texts.items()}
