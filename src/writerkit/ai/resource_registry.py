"""Remote file and prompt cache lifecycle.

For the current document the registry decides whether to reuse an uploaded
file and a prompt cache or to create new ones. Nothing expected from the
remote service makes :meth:`ResourceCacheRegistry.prepare` raise: listing,
upload and cache creation problems come back as degraded outcomes and the
caller continues with reduced efficiency.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import List, Optional, Tuple

from .adapter.base import BaseTransportAdapter
from .cleanup import clear_all_remote_resources
from .models.common import (
    CleanupReport,
    Degraded,
    Fatal,
    Ok,
    PrepareResult,
    PromptCacheHandle,
    RemoteFileHandle,
    format_remaining_time,
    utcnow,
)
from ..core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 4 * 3600

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a professional manuscript editor and writing assistant. "
    "The attached document is the author's manuscript; treat it as the sole "
    "source text for every request in this session.\n"
    "IMPORTANT: Answer only with the requested content. Never begin with "
    "conversational preamble (such as 'Okay, here is...' or 'Certainly!') and "
    "never end with a postamble offering further help or summarising what you did."
)


UPLOAD_PREFIX = "Manuscript: "


def upload_display_name(document_path: str) -> str:
    """Display name given to uploads of ``document_path``."""
    return f"{UPLOAD_PREFIX}{os.path.basename(document_path)}"


class ResourceCacheRegistry:
    """Tracks the current (file, cache) pair for the active document.

    One instance per project session; pass it to every tool run rather than
    sharing it through module state. ``prepare`` calls are serialized, so two
    concurrent runs never mutate the pair at the same time.
    """

    def __init__(self, adapter: BaseTransportAdapter,
                 cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
                 system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION):
        self.adapter = adapter
        self.cache_ttl_seconds = cache_ttl_seconds
        self.system_instruction = system_instruction

        self._document_path: Optional[str] = None
        self._file_handle: Optional[RemoteFileHandle] = None
        self._cache_handle: Optional[PromptCacheHandle] = None
        self._lock = asyncio.Lock()

    @property
    def document_path(self) -> Optional[str]:
        return self._document_path

    @property
    def current_pair(self) -> Tuple[Optional[RemoteFileHandle], Optional[PromptCacheHandle]]:
        return self._file_handle, self._cache_handle

    def invalidate(self) -> None:
        """Forget the current pair; the next ``prepare`` starts from the listing."""
        if self._document_path:
            logger.info(f"Invalidating remote resources for {self._document_path}")
        self._document_path = None
        self._file_handle = None
        self._cache_handle = None

    def _require_credentials(self) -> None:
        if not self.adapter.api_key:
            raise ConfigurationError(
                f"No API key configured for {self.adapter.provider_name}; "
                "set GEMINI_API_KEY (or OPENAI_API_KEY for the openai provider)"
            )

    # Selection policy

    @staticmethod
    def _select_file(files: List[RemoteFileHandle], document_path: str) -> Optional[RemoteFileHandle]:
        """
        Prefer an ACTIVE upload of this document, else the first ACTIVE one
        in listing order. Uploads labelled as another manuscript are skipped.
        """
        wanted = upload_display_name(document_path)
        active = [f for f in files if f.is_active and not (
            (f.display_name or "").startswith(UPLOAD_PREFIX) and f.display_name != wanted)]
        for handle in active:
            if handle.display_name == wanted:
                return handle
        return active[0] if active else None

    @staticmethod
    def _select_cache(caches: List[PromptCacheHandle], document_path: str,
                      now: datetime) -> Optional[PromptCacheHandle]:
        """
        Prefer an unexpired cache named after this document, else the first
        unexpired one. Caches named after another document path are skipped.
        """
        usable = [c for c in caches if c.is_usable(now) and not (
            c.display_name and os.path.isabs(c.display_name) and c.display_name != document_path)]
        for handle in usable:
            if handle.display_name == document_path:
                return handle
        return usable[0] if usable else None

    # Steps

    async def _list_files(self, result: PrepareResult) -> List[RemoteFileHandle]:
        if not self.adapter.capabilities.supports_file_listing:
            result.messages.append("NOTE: Cannot list uploaded files; proceeding as if none exist.")
            result.outcomes.append(Ok(step="list_files", value=0))
            return []
        try:
            files = await self.adapter.with_retry(self.adapter.list_files, "List files")
        except Exception as e:
            logger.warning(f"File listing failed: {e}")
            result.outcomes.append(Degraded(step="list_files", reason=f"Failed to list files: {e}"))
            return []
        result.messages.append(f"Found {len(files)} uploaded file(s).")
        result.outcomes.append(Ok(step="list_files", value=len(files)))
        return files

    async def _upload(self, document_path: str, result: PrepareResult) -> Optional[RemoteFileHandle]:
        if not self.adapter.capabilities.supports_file_upload:
            result.outcomes.append(Degraded(step="upload_file",
                                            reason="File upload is not supported by this transport"))
            return None
        display_name = upload_display_name(document_path)
        try:
            handle = await self.adapter.upload_file(document_path, display_name, "text/plain")
        except Exception as e:
            logger.error(f"Upload of {document_path} failed: {e}")
            result.outcomes.append(Degraded(step="upload_file", reason=f"Failed to upload file: {e}"))
            return None
        result.messages.append(f"Uploaded {display_name} as {handle.name} (state: {handle.state.value}).")
        result.outcomes.append(Ok(step="upload_file", value=handle.name))
        return handle

    async def _list_caches(self, result: PrepareResult) -> List[PromptCacheHandle]:
        if not self.adapter.capabilities.supports_cache_listing:
            result.messages.append("NOTE: Cannot access caches API. Will proceed without cache support.")
            result.outcomes.append(Ok(step="list_caches", value=0))
            return []
        try:
            caches = await self.adapter.with_retry(self.adapter.list_caches, "List caches")
        except Exception as e:
            logger.warning(f"Cache listing failed: {e}")
            result.outcomes.append(Degraded(step="list_caches", reason=f"Failed to list caches: {e}"))
            return []
        result.messages.append(f"Found {len(caches)} cache(s).")
        result.outcomes.append(Ok(step="list_caches", value=len(caches)))
        return caches

    async def _create_cache(self, file_handle: RemoteFileHandle, document_path: str,
                            base_instructions: Optional[str],
                            result: PrepareResult) -> Optional[PromptCacheHandle]:
        if not self.adapter.capabilities.supports_cache_creation:
            result.outcomes.append(Degraded(step="create_cache",
                                            reason="Prompt caching is not supported by this transport"))
            return None
        instructions = base_instructions or self.system_instruction

        async def create():
            return await self.adapter.create_cache(
                file_handle=file_handle,
                display_name=document_path,
                system_instruction=instructions,
                ttl_seconds=self.cache_ttl_seconds,
            )

        try:
            cache = await self.adapter.with_retry(create, "Create cache")
        except Exception as e:
            logger.error(f"Cache creation for {document_path} failed: {e}")
            result.outcomes.append(Degraded(step="create_cache", reason=f"Failed to create cache: {e}"))
            return None
        result.messages.append(
            f"Created cache {cache.name} (expires in {format_remaining_time(cache.expire_time)})."
        )
        result.outcomes.append(Ok(step="create_cache", value=cache.name))
        return cache

    async def prepare(self, document_path: str,
                      base_instructions: Optional[str] = None) -> PrepareResult:
        """
        Resolve a file handle and a prompt cache for ``document_path``.

        Args:
            document_path: Local document to upload or match against existing uploads.
            base_instructions: System instructions for a newly created cache;
                defaults to a block forbidding preamble and postamble.

        Returns:
            The resolved pair plus informational messages and non-fatal errors.

        Raises:
            ConfigurationError: If the transport has no credentials.
        """
        self._require_credentials()

        async with self._lock:
            path = os.path.abspath(os.path.expanduser(document_path))
            result = PrepareResult(document_path=path)

            if self._document_path and self._document_path != path:
                result.messages.append(f"Switching document from {self._document_path} to {path}.")
                self.invalidate()

            if not os.path.isfile(path):
                result.outcomes.append(Fatal(step="read_document", error=f"Document not found: {path}"))
                return result

            now = utcnow()

            # Steps 1-2: reuse an ACTIVE upload or upload the document
            files = await self._list_files(result)
            file_handle = self._select_file(files, path)
            if file_handle is not None:
                if self._file_handle is not None and self._file_handle.name == file_handle.name:
                    file_handle = self._file_handle
                elif file_handle.local_path is None:
                    file_handle = file_handle.model_copy(update={"local_path": path})
                result.messages.append(f"Using existing file: {file_handle.name} ({file_handle.display_name}).")
                result.outcomes.append(Ok(step="reuse_file", value=file_handle.name))
            else:
                file_handle = await self._upload(path, result)

            # Steps 3-4: reuse an unexpired cache
            caches = await self._list_caches(result)
            cache_handle = self._select_cache(caches, path, now)
            if cache_handle is not None:
                if self._cache_handle is not None and self._cache_handle.name == cache_handle.name:
                    cache_handle = self._cache_handle
                result.messages.append(
                    f"Using existing cache: {cache_handle.name} "
                    f"(remaining: {format_remaining_time(cache_handle.expire_time, now)})."
                )
                result.outcomes.append(Ok(step="reuse_cache", value=cache_handle.name))
            elif caches:
                result.messages.append("NOTE: All found caches are expired.")

            # Step 5: create a cache from an ACTIVE file
            if cache_handle is None and file_handle is not None:
                if file_handle.is_active:
                    cache_handle = await self._create_cache(file_handle, path, base_instructions, result)
                else:
                    result.outcomes.append(Degraded(
                        step="create_cache",
                        reason=f"File {file_handle.name} is {file_handle.state.value}, not ACTIVE; "
                               "continuing without a cache",
                    ))

            # Step 6: remember the pair for this session
            self._document_path = path
            self._file_handle = file_handle
            self._cache_handle = cache_handle

            result.file_handle = file_handle
            result.cache_handle = cache_handle
            result.active_model = cache_handle.model if cache_handle and cache_handle.model else self.adapter.model
            if result.degraded:
                logger.warning(f"Prepared {path} in degraded mode: {'; '.join(result.errors)}")
            return result

    async def clear_all_remote_resources(self) -> CleanupReport:
        """Delete every remote file and cache under the credential, then invalidate."""
        self._require_credentials()
        async with self._lock:
            report = await clear_all_remote_resources(self.adapter)
            self.invalidate()
            return report
