"""Gemini adapter implementation over the google-genai SDK."""

import logging
import os
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional

from google import genai
from google.genai import types

from .base import BaseTransportAdapter
from ..models.capabilities import TransportCapabilities, get_gemini_capabilities
from ..models.common import (
    ChunkKind,
    FileState,
    GenerationRequest,
    PromptCacheHandle,
    RemoteFileHandle,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-pro-preview-05-06"

# Manuscripts routinely trip the default filters; the author owns the content
SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.OFF)
    for category in (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]


def _ttl_seconds(ttl: Any) -> Optional[int]:
    """Parse ``"14400s"`` style durations."""
    if ttl is None:
        return None
    try:
        return int(float(str(ttl).rstrip("s")))
    except ValueError:
        return None


class GeminiAdapter(BaseTransportAdapter):
    """Gemini adapter with file upload, context caching and streaming."""

    def __init__(self, model: str = DEFAULT_MODEL, api_key: Optional[str] = None,
                 timeout: int = 900, **kwargs):
        """Initialize Gemini adapter.

        Args:
            model: Gemini model name
            api_key: API key; falls back to ``GEMINI_API_KEY``
            timeout: Transport timeout in seconds
        """
        super().__init__(model=model or DEFAULT_MODEL, api_key=api_key, **kwargs)

        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError("Gemini API key is required (set GEMINI_API_KEY)")

        self.timeout = timeout
        self.client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=timeout * 1000),
        )

    @property
    def capabilities(self) -> TransportCapabilities:
        """Return Gemini capabilities."""
        return get_gemini_capabilities(self.model)

    # Conversions

    @staticmethod
    def _to_file_handle(file: Any, local_path: Optional[str] = None) -> RemoteFileHandle:
        size = getattr(file, "size_bytes", None)
        return RemoteFileHandle(
            name=file.name,
            display_name=getattr(file, "display_name", None),
            uri=getattr(file, "uri", None),
            mime_type=getattr(file, "mime_type", None) or "text/plain",
            size_bytes=int(size) if size is not None else None,
            state=FileState.parse(getattr(file, "state", None)),
            local_path=local_path,
            create_time=getattr(file, "create_time", None),
            expire_time=getattr(file, "expiration_time", None),
        )

    @staticmethod
    def _to_cache_handle(cache: Any, **extra) -> PromptCacheHandle:
        expire_time = getattr(cache, "expire_time", None)
        if isinstance(expire_time, str):
            expire_time = datetime.fromisoformat(expire_time.replace("Z", "+00:00"))
        return PromptCacheHandle(
            name=cache.name,
            model=getattr(cache, "model", None),
            display_name=getattr(cache, "display_name", None),
            expire_time=expire_time,
            **extra,
        )

    # File operations

    async def list_files(self) -> List[RemoteFileHandle]:
        pager = await self.client.aio.files.list()
        return [self._to_file_handle(file) async for file in pager]

    async def upload_file(self, path: str, display_name: str,
                          mime_type: str = "text/plain") -> RemoteFileHandle:
        uploaded = await self.client.aio.files.upload(
            file=path,
            config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
        )
        logger.info(f"Uploaded {path} as {uploaded.name}")
        return self._to_file_handle(uploaded, local_path=path)

    async def delete_file(self, name: str) -> None:
        await self.client.aio.files.delete(name=name)

    # Prompt cache operations

    async def list_caches(self) -> List[PromptCacheHandle]:
        pager = await self.client.aio.caches.list()
        return [self._to_cache_handle(cache) async for cache in pager]

    async def create_cache(
        self,
        file_handle: RemoteFileHandle,
        display_name: str,
        system_instruction: str,
        ttl_seconds: int,
        model: Optional[str] = None,
    ) -> PromptCacheHandle:
        model = model or self.model
        cache = await self.client.aio.caches.create(
            model=model,
            config=types.CreateCachedContentConfig(
                display_name=display_name,
                system_instruction=system_instruction,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part.from_uri(file_uri=file_handle.uri,
                                                   mime_type=file_handle.mime_type)],
                    )
                ],
                ttl=f"{ttl_seconds}s",
            ),
        )
        logger.info(f"Created cache {cache.name} for {display_name}")
        return self._to_cache_handle(
            cache,
            ttl_seconds=_ttl_seconds(getattr(cache, "ttl", None)) or ttl_seconds,
            system_instruction=system_instruction,
            file_name=file_handle.name,
        )

    async def delete_cache(self, name: str) -> None:
        await self.client.aio.caches.delete(name=name)

    # Generation

    async def count_tokens(self, text: str) -> int:
        result = await self.client.aio.models.count_tokens(model=self.model, contents=text)
        return result.total_tokens or 0

    def _build_contents(self, request: GenerationRequest) -> List[types.Content]:
        parts = [types.Part.from_text(text=request.prompt)]
        if request.file_handle is not None and not request.cached_content:
            parts.append(types.Part.from_uri(file_uri=request.file_handle.uri,
                                             mime_type=request.file_handle.mime_type))
        return [types.Content(role="user", parts=parts)]

    def _build_config(self, request: GenerationRequest) -> types.GenerateContentConfig:
        params = {
            "safety_settings": SAFETY_SETTINGS,
            "response_mime_type": "text/plain",
        }
        if request.cached_content:
            params["cached_content"] = request.cached_content
        elif request.system_instruction:
            # Cached content already carries its system instruction
            params["system_instruction"] = request.system_instruction
        if request.include_thoughts:
            params["thinking_config"] = types.ThinkingConfig(include_thoughts=True)
        return types.GenerateContentConfig(**params)

    @staticmethod
    def _usage_from(metadata: Any) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=getattr(metadata, "prompt_token_count", None) or 0,
            response_tokens=getattr(metadata, "candidates_token_count", None) or 0,
            cached_tokens=getattr(metadata, "cached_content_token_count", None),
            thinking_tokens=getattr(metadata, "thoughts_token_count", None),
        )

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[StreamChunk]:
        """Stream text fragments, tagging native thought parts as thinking."""
        stream = await self.client.aio.models.generate_content_stream(
            model=request.model or self.model,
            contents=self._build_contents(request),
            config=self._build_config(request),
        )
        try:
            async for chunk in stream:
                candidates = getattr(chunk, "candidates", None) or []
                content = getattr(candidates[0], "content", None) if candidates else None
                parts = getattr(content, "parts", None) or []

                if parts:
                    for part in parts:
                        text = getattr(part, "text", None)
                        if not text:
                            continue
                        kind = ChunkKind.THINKING if getattr(part, "thought", False) else ChunkKind.TEXT
                        yield StreamChunk(text=text, kind=kind)
                elif getattr(chunk, "text", None):
                    yield StreamChunk(text=chunk.text)

                metadata = getattr(chunk, "usage_metadata", None)
                if metadata is not None:
                    yield StreamChunk(usage=self._usage_from(metadata))
        finally:
            # Release the HTTP connection when the consumer stops early
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
