"""Remote token accounting."""

import logging

from .adapter.base import BaseTransportAdapter

logger = logging.getLogger(__name__)


class TokenAccountant:
    """Counts tokens through the model transport.

    Counting never raises. A failure is logged and reported as 0, which
    callers must read as "unknown" and use only for display or budgeting.
    """

    def __init__(self, adapter: BaseTransportAdapter):
        self.adapter = adapter

    async def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        if not self.adapter.capabilities.supports_token_counting:
            logger.debug(f"{self.adapter.provider_name} cannot count tokens")
            return 0
        try:
            count = await self.adapter.count_tokens(text)
        except Exception as e:
            logger.error(f"Token counting error: {e}")
            return 0
        return max(int(count or 0), 0)
