"""OpenAI adapter implementation with file hosting and streaming."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .base import BaseTransportAdapter
from ...core.tokenizer import TokenCounter
from ..models.capabilities import TransportCapabilities, get_openai_capabilities
from ..models.common import (
    FileState,
    GenerationRequest,
    RemoteFileHandle,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "uploaded": FileState.ACTIVE,
    "processed": FileState.ACTIVE,
    "error": FileState.FAILED,
}


class OpenAIAdapter(BaseTransportAdapter):
    """OpenAI adapter. Uploaded files are supported; prompt caches are not."""

    def __init__(self, model: str = "gpt-4o", api_key: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: int = 900, **kwargs):
        """Initialize OpenAI adapter."""
        super().__init__(model=model or "gpt-4o", api_key=api_key, **kwargs)

        # Get API key from parameter or environment
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key is required")

        self.client = AsyncOpenAI(api_key=self.api_key, base_url=base_url, timeout=timeout)
        self.token_counter = TokenCounter(model=self.model)

    @property
    def capabilities(self) -> TransportCapabilities:
        """Return OpenAI capabilities."""
        return get_openai_capabilities(self.model)

    @staticmethod
    def _to_file_handle(file: Any, local_path: Optional[str] = None) -> RemoteFileHandle:
        created = getattr(file, "created_at", None)
        return RemoteFileHandle(
            name=file.id,
            display_name=getattr(file, "filename", None),
            size_bytes=getattr(file, "bytes", None),
            state=_STATUS_MAP.get(getattr(file, "status", ""), FileState.PENDING),
            local_path=local_path,
            create_time=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        )

    async def list_files(self) -> List[RemoteFileHandle]:
        return [self._to_file_handle(file) async for file in self.client.files.list()]

    async def upload_file(self, path: str, display_name: str,
                          mime_type: str = "text/plain") -> RemoteFileHandle:
        content = Path(path).read_bytes()
        uploaded = await self.client.files.create(
            file=(display_name, content, mime_type),
            purpose="user_data",
        )
        logger.info(f"Uploaded {path} as {uploaded.id}")
        return self._to_file_handle(uploaded, local_path=path)

    async def delete_file(self, name: str) -> None:
        await self.client.files.delete(name)

    async def count_tokens(self, text: str) -> int:
        """Count tokens locally using tiktoken."""
        return self.token_counter.count(text)

    def _build_messages(self, request: GenerationRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})

        content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        if request.file_handle is not None:
            content.append({"type": "file", "file": {"file_id": request.file_handle.name}})
        messages.append({"role": "user", "content": content})
        return messages

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[StreamChunk]:
        stream = await self.client.chat.completions.create(
            model=request.model or self.model,
            messages=self._build_messages(request),
            stream=True,
            stream_options={"include_usage": True},
        )
        try:
            async for chunk in stream:
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    if delta is not None and delta.content:
                        yield StreamChunk(text=delta.content)
                if getattr(chunk, "usage", None):
                    yield StreamChunk(usage=TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        response_tokens=chunk.usage.completion_tokens or 0,
                    ))
        finally:
            await stream.close()
