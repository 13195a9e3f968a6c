import pytest
import tempfile
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from writerkit.ai.adapter.base import BaseTransportAdapter
from writerkit.ai.models.capabilities import TransportCapabilities
from writerkit.ai.models.common import (
    FileState,
    PromptCacheHandle,
    RemoteFileHandle,
    StreamChunk,
    TokenUsage,
)
from writerkit.core.models import Config
from writerkit.core.prompts import PromptStore
from writerkit.core.session_files import SessionFileRegistry


class FakeTransport(BaseTransportAdapter):
    """In-memory transport with call counters and failure switches."""

    def __init__(self, model: str = "fake-model", api_key: Optional[str] = "test-key",
                 capabilities: Optional[TransportCapabilities] = None, **kwargs):
        kwargs.setdefault("retry_base_delay", 0)
        super().__init__(model=model, api_key=api_key, **kwargs)
        self._capabilities = capabilities or TransportCapabilities(
            supports_file_listing=True,
            supports_file_upload=True,
            supports_file_deletion=True,
            supports_cache_listing=True,
            supports_cache_creation=True,
            supports_cache_deletion=True,
        )
        self.files: List[RemoteFileHandle] = []
        self.caches: List[PromptCacheHandle] = []
        self.upload_state = FileState.ACTIVE
        self.chunks: List[StreamChunk] = []
        self.token_count = 42

        # Failure switches: an exception instance is raised by that operation
        self.fail_list_files: Optional[Exception] = None
        self.fail_upload: Optional[Exception] = None
        self.fail_list_caches: Optional[Exception] = None
        self.fail_create_cache: Optional[Exception] = None
        self.fail_delete: Optional[Exception] = None
        self.fail_count: Optional[Exception] = None
        self.fail_stream_after: Optional[int] = None
        self.stream_error: Exception = ConnectionError("connection reset")

        self.calls = {
            "list_files": 0, "upload_file": 0, "delete_file": 0,
            "list_caches": 0, "create_cache": 0, "delete_cache": 0,
            "count_tokens": 0, "generate_stream": 0,
        }
        self.requests = []
        self.stream_closed = False

    @property
    def capabilities(self) -> TransportCapabilities:
        return self._capabilities

    async def list_files(self):
        self.calls["list_files"] += 1
        if self.fail_list_files:
            raise self.fail_list_files
        return list(self.files)

    async def upload_file(self, path, display_name, mime_type="text/plain"):
        self.calls["upload_file"] += 1
        if self.fail_upload:
            raise self.fail_upload
        handle = RemoteFileHandle(
            name=f"files/upload-{self.calls['upload_file']}",
            display_name=display_name,
            uri=f"https://example.invalid/files/upload-{self.calls['upload_file']}",
            mime_type=mime_type,
            state=self.upload_state,
            local_path=path,
        )
        self.files.append(handle)
        return handle

    async def delete_file(self, name):
        self.calls["delete_file"] += 1
        if self.fail_delete:
            raise self.fail_delete
        self.files = [f for f in self.files if f.name != name]

    async def list_caches(self):
        self.calls["list_caches"] += 1
        if self.fail_list_caches:
            raise self.fail_list_caches
        return list(self.caches)

    async def create_cache(self, file_handle, display_name, system_instruction, ttl_seconds, model=None):
        self.calls["create_cache"] += 1
        if self.fail_create_cache:
            raise self.fail_create_cache
        handle = PromptCacheHandle(
            name=f"cachedContents/cache-{self.calls['create_cache']}",
            model=model or self.model,
            display_name=display_name,
            expire_time=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            ttl_seconds=ttl_seconds,
            system_instruction=system_instruction,
            file_name=file_handle.name,
        )
        self.caches.append(handle)
        return handle

    async def delete_cache(self, name):
        self.calls["delete_cache"] += 1
        if self.fail_delete:
            raise self.fail_delete
        self.caches = [c for c in self.caches if c.name != name]

    async def count_tokens(self, text):
        self.calls["count_tokens"] += 1
        if self.fail_count:
            raise self.fail_count
        return self.token_count

    async def generate_stream(self, request):
        self.calls["generate_stream"] += 1
        self.requests.append(request)
        try:
            for index, chunk in enumerate(self.chunks):
                if self.fail_stream_after is not None and index >= self.fail_stream_after:
                    raise self.stream_error
                yield chunk
        finally:
            self.stream_closed = True


def text_chunks(*fragments: str, usage: Optional[TokenUsage] = None) -> List[StreamChunk]:
    chunks = [StreamChunk(text=fragment) for fragment in fragments]
    if usage is not None:
        chunks.append(StreamChunk(usage=usage))
    return chunks


@pytest.fixture
def temp_workspace():
    """Create a temporary directory for test files."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def project(temp_workspace):
    """A project directory with a manuscript and a prompts folder."""
    save_dir = temp_workspace / "project"
    save_dir.mkdir()
    prompts_dir = temp_workspace / "tool-prompts"
    prompts_dir.mkdir()
    (save_dir / "manuscript.txt").write_text(
        "Chapter 1: The Storm\n\nRain hammered the harbor.\n", encoding="utf-8"
    )
    return save_dir, prompts_dir


@pytest.fixture
def config(project):
    save_dir, prompts_dir = project
    return Config(
        provider="gemini",
        api_key="test-key",
        model_name="fake-model",
        save_dir=str(save_dir),
        prompts_dir=str(prompts_dir),
    )


@pytest.fixture
def tool_context(config, fake_transport):
    """A ToolContext wired to the fake transport, capturing the run log."""
    from writerkit.core.executor import ToolContext

    log: List[str] = []
    thinking: List[str] = []
    context = ToolContext.create(
        config,
        fake_transport,
        prompts=PromptStore(config.prompts_dir),
        session_files=SessionFileRegistry(),
        emit=log.append,
        emit_thinking=thinking.append,
        clock=lambda: datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc),
    )
    context.log = log
    context.thinking_log = thinking
    return context
