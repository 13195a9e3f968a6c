"""Abstract base adapter for model transports."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

from ..models.capabilities import TransportCapabilities
from ..models.common import (
    GenerationRequest,
    PromptCacheHandle,
    RemoteFileHandle,
    StreamChunk,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth retrying, matched as whole numbers
_RETRYABLE_STATUS = re.compile(r"\b(429|500|502|503|504)\b")


class BaseTransportAdapter(ABC):
    """Abstract base class for all model transport adapters.

    The core depends only on list/upload/delete for files, list/create/delete
    for caches, count-tokens and generate-stream. Adapters advertise which of
    these they support through :attr:`capabilities`.
    """

    def __init__(self, model: str, api_key: Optional[str] = None,
                 max_retries: int = 2, retry_base_delay: float = 1.0):
        self.model = model
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    @property
    @abstractmethod
    def capabilities(self) -> TransportCapabilities:
        """Return the capabilities of this transport."""
        pass

    @property
    def provider_name(self) -> str:
        """Return the name of this provider."""
        return self.__class__.__name__.replace("Adapter", "").lower()

    def _unsupported(self, operation: str) -> NotImplementedError:
        return NotImplementedError(f"{self.provider_name} does not support {operation}")

    # File operations

    async def list_files(self) -> List[RemoteFileHandle]:
        """List uploaded files in the order the service returns them."""
        raise self._unsupported("file listing")

    async def upload_file(self, path: str, display_name: str,
                          mime_type: str = "text/plain") -> RemoteFileHandle:
        """Upload a local document."""
        raise self._unsupported("file upload")

    async def delete_file(self, name: str) -> None:
        raise self._unsupported("file deletion")

    # Prompt cache operations

    async def list_caches(self) -> List[PromptCacheHandle]:
        """List prompt caches in the order the service returns them."""
        raise self._unsupported("cache listing")

    async def create_cache(
        self,
        file_handle: RemoteFileHandle,
        display_name: str,
        system_instruction: str,
        ttl_seconds: int,
        model: Optional[str] = None,
    ) -> PromptCacheHandle:
        """Create a prompt cache holding the content of ``file_handle``."""
        raise self._unsupported("cache creation")

    async def delete_cache(self, name: str) -> None:
        raise self._unsupported("cache deletion")

    # Generation

    @abstractmethod
    async def count_tokens(self, text: str) -> int:
        """Count tokens in ``text`` for this model. May raise on transport failure."""
        pass

    @abstractmethod
    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[StreamChunk]:
        """
        Stream a response for ``request``.

        Implementations are async generators; closing the generator must
        release the underlying connection.
        """
        pass

    # Error classification and retry

    def is_recoverable_error(self, error: Exception) -> bool:
        """Determine if an error is recoverable (for retry logic)."""
        if isinstance(error, NotImplementedError):
            return False

        error_str = str(error).lower()

        # Non-recoverable errors
        if any(term in error_str for term in ["unauthorized", "api key", "permission", "forbidden"]):
            return False
        if any(term in error_str for term in ["not found", "invalid argument", "unsupported"]):
            return False

        # Recoverable errors
        if any(term in error_str for term in ["rate limit", "timeout", "timed out", "connection",
                                              "overloaded", "unavailable"]):
            return True
        if _RETRYABLE_STATUS.search(error_str):
            return True

        return False

    async def with_retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """
        Run ``operation`` with bounded exponential backoff.

        Used for list and create calls only. A generation stream is never
        retried because text already shown to the user cannot be withdrawn.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_retries or not self.is_recoverable_error(e):
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"{description} failed ({e}); retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                await asyncio.sleep(delay)

    def __repr__(self) -> str:
        """String representation of the adapter."""
        return f"{self.__class__.__name__}(model='{self.model}', provider='{self.provider_name}')"
