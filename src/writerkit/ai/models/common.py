"""Common data models for the model transport layer."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FileState(str, Enum):
    """Lifecycle state of an uploaded file."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @classmethod
    def parse(cls, value: Any) -> "FileState":
        """Map SDK enum values or strings (``FileState.ACTIVE``, ``"ACTIVE"``) onto ours."""
        if isinstance(value, cls):
            return value
        raw = getattr(value, "value", None) or getattr(value, "name", None) or str(value or "")
        raw = str(raw).rsplit(".", 1)[-1].upper()
        if raw == "PROCESSING":
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class RemoteFileHandle(BaseModel):
    """An uploaded document on the remote service."""
    name: str
    display_name: Optional[str] = None
    uri: Optional[str] = None
    mime_type: str = "text/plain"
    size_bytes: Optional[int] = None
    state: FileState = FileState.PENDING
    local_path: Optional[str] = None  # Absolute path of the document it represents
    create_time: Optional[datetime] = None
    expire_time: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state == FileState.ACTIVE


class PromptCacheHandle(BaseModel):
    """A server-side context cache built from an uploaded file."""
    name: str
    model: Optional[str] = None
    display_name: Optional[str] = None  # Conventionally the source document's resolved path
    expire_time: Optional[datetime] = None
    ttl_seconds: Optional[int] = None
    system_instruction: Optional[str] = None
    file_name: Optional[str] = None

    def remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time left before expiry, derived from ``expire_time`` on every call."""
        if self.expire_time is None:
            return None
        now = _as_utc(now or utcnow())
        return _as_utc(self.expire_time) - now

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        """A cache is usable only while ``now < expire_time``."""
        remaining = self.remaining(now)
        return remaining is not None and remaining > timedelta(0)


def format_remaining_time(expire_time: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human-readable time until expiry: ``3h 59m``, ``expired`` or ``unknown``."""
    if expire_time is None:
        return "unknown"
    now = _as_utc(now or utcnow())
    remaining = _as_utc(expire_time) - now
    if remaining <= timedelta(0):
        return "expired"
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


class TokenUsage(BaseModel):
    """Token usage reported at the end of a stream."""
    prompt_tokens: int = 0
    response_tokens: int = 0
    cached_tokens: Optional[int] = None
    thinking_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.response_tokens


class ChunkKind(str, Enum):
    """How the transport labelled a chunk."""
    TEXT = "text"
    THINKING = "thinking"  # Natively tagged reasoning, no marker parsing needed


class StreamChunk(BaseModel):
    """One fragment delivered by the transport."""
    text: str = ""
    kind: ChunkKind = ChunkKind.TEXT
    usage: Optional[TokenUsage] = None


class ChannelState(str, Enum):
    """Demultiplexer state for one turn."""
    PREAMBLE = "PREAMBLE"
    THINKING = "THINKING"
    ANSWER = "ANSWER"


class StreamingTurn(BaseModel):
    """One end-to-end model invocation."""
    prompt: str
    thinking: str = ""
    answer: str = ""
    state: ChannelState = ChannelState.PREAMBLE
    chunk_count: int = 0
    usage: Optional[TokenUsage] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def finish(self) -> None:
        self.finished_at = utcnow()


class GenerationRequest(BaseModel):
    """Input to a streaming generation call."""
    model: str
    prompt: str
    cached_content: Optional[str] = None  # Cache name to reference
    file_handle: Optional[RemoteFileHandle] = None  # Uploaded document to attach
    system_instruction: Optional[str] = None
    include_thoughts: bool = False  # Ask for natively tagged reasoning chunks


# Typed step outcomes used by the resource registry

class Ok(BaseModel):
    kind: Literal["ok"] = "ok"
    step: str
    value: Any = None


class Degraded(BaseModel):
    kind: Literal["degraded"] = "degraded"
    step: str
    reason: str


class Fatal(BaseModel):
    kind: Literal["fatal"] = "fatal"
    step: str
    error: str


Outcome = Union[Ok, Degraded, Fatal]


class PrepareResult(BaseModel):
    """Resolved remote resources for one document."""
    document_path: Optional[str] = None
    file_handle: Optional[RemoteFileHandle] = None
    cache_handle: Optional[PromptCacheHandle] = None
    active_model: Optional[str] = None
    messages: List[str] = Field(default_factory=list)
    outcomes: List[Outcome] = Field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        """Problems to show the user, one line per degraded or fatal step."""
        errors = []
        for outcome in self.outcomes:
            if isinstance(outcome, Degraded):
                errors.append(outcome.reason)
            elif isinstance(outcome, Fatal):
                errors.append(outcome.error)
        return errors

    @property
    def degraded(self) -> bool:
        return any(isinstance(o, Degraded) for o in self.outcomes)

    @property
    def fatal(self) -> Optional[Fatal]:
        for outcome in self.outcomes:
            if isinstance(outcome, Fatal):
                return outcome
        return None


class CleanupReport(BaseModel):
    """Result of a best-effort sweep of remote resources."""
    files_deleted: List[str] = Field(default_factory=list)
    caches_deleted: List[str] = Field(default_factory=list)
    failures: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
