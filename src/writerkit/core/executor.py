"""
Tool execution engine.

Every catalogued tool runs through :class:`AnalysisTool`: read inputs, load
the prompt, acquire remote resources, count tokens, stream the response,
save a timestamped report and register it for the shell. Counting tools
(``generates=False``) stop after measuring their document.

If the running task is cancelled mid-stream the partial answer is saved
before the cancellation propagates.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .errors import ConfigurationError, RequiredInputMissing, TransportError
from .models import Config, ToolResult, ToolStats
from .prompts import PromptStore
from .session_files import SessionFileRegistry
from .tokenizer import count_words
from .tools import ToolDefinition, ToolInput, get_tool
from .workspace import (
    append_to_manuscript,
    compact_timestamp,
    count_report,
    ensure_absolute_path,
    read_optional,
    read_or_create_placeholder,
    read_required,
    write_output_file,
    write_report,
)
from ..ai.accountant import TokenAccountant
from ..ai.adapter.base import BaseTransportAdapter
from ..ai.models.common import GenerationRequest, PrepareResult, StreamingTurn
from ..ai.resource_registry import ResourceCacheRegistry
from ..ai.streaming import THINKING_INSTRUCTIONS, CancellationToken, StreamDemultiplexer

logger = logging.getLogger(__name__)

Emitter = Callable[[str], None]


def _discard(text: str) -> None:
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class ToolContext:
    """Collaborators shared by every tool run in a project session."""

    config: Config
    adapter: BaseTransportAdapter
    registry: ResourceCacheRegistry
    prompts: PromptStore
    session_files: SessionFileRegistry
    emit: Emitter = _discard
    emit_thinking: Optional[Emitter] = None
    clock: Callable[[], datetime] = _utcnow
    accountant: Optional[TokenAccountant] = None

    def __post_init__(self):
        if self.accountant is None:
            self.accountant = TokenAccountant(self.adapter)

    @classmethod
    def create(cls, config: Config, adapter: BaseTransportAdapter, **kwargs) -> "ToolContext":
        """Build a context with a fresh registry, prompt store and session file registry."""
        kwargs.setdefault("registry", ResourceCacheRegistry(adapter, cache_ttl_seconds=config.cache_ttl_seconds))
        kwargs.setdefault("prompts", PromptStore(config.resolved_prompts_dir))
        kwargs.setdefault("session_files", SessionFileRegistry())
        return cls(config=config, adapter=adapter, **kwargs)


@dataclass
class ResolvedInputs:
    """Input file contents and text options for one run."""

    paths: Dict[str, str] = field(default_factory=dict)
    contents: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, str] = field(default_factory=dict)


def _section_label(input_name: str) -> str:
    return input_name.replace("_file", "").replace("_", " ").upper()


def _section(label: str, content: str) -> str:
    return f"=== {label} ===\n{content.strip()}\n=== END {label} ==="


class AnalysisTool:
    """Runs one catalogued tool against the project workspace."""

    def __init__(self, definition: ToolDefinition, context: ToolContext):
        self.definition = definition
        self.context = context

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def title(self) -> str:
        return self.definition.title

    def emit(self, text: str) -> None:
        self.context.emit(text)

    # Setup

    def _resolve_save_dir(self, options: Dict[str, str]) -> str:
        save_dir = options.get("save_dir") or self.context.config.save_dir
        if not save_dir:
            self.emit("Error: No save directory specified and no current project selected.\n"
                      "Please select a project or specify a save directory.\n")
            raise ConfigurationError("No save directory available")
        return os.path.abspath(os.path.expanduser(save_dir))

    def _read_input(self, tool_input: ToolInput, path: str) -> str:
        if tool_input.kind == "required":
            self.emit(f"Reading {tool_input.name}: {path}\n")
            try:
                return read_required(path)
            except RequiredInputMissing as e:
                self.emit(f"Error: Required input {tool_input.name} unusable ({e.reason}): {path}\n")
                raise
        if tool_input.kind == "placeholder":
            if not os.path.exists(path):
                self.emit(f"Note: {path} not found. Creating a new empty file.\n")
            return read_or_create_placeholder(path)
        content = read_optional(path)
        if not content:
            label = _section_label(tool_input.name).lower()
            self.emit(f"Note: {label.capitalize()} file not found at: {path}\n"
                      f"Continuing without {label} information.\n")
        return content

    def _resolve_inputs(self, options: Dict[str, str], save_dir: str) -> ResolvedInputs:
        values = self.definition.defaults()
        values.update({k: v for k, v in options.items() if v is not None})

        resolved = ResolvedInputs()
        for tool_input in self.definition.inputs:
            value = str(values.get(tool_input.name, "") or "")
            if not tool_input.is_file:
                if value:
                    resolved.options[tool_input.name] = value
                continue
            if not value:
                if tool_input.kind == "required":
                    raise RequiredInputMissing(tool_input.name, "No path given for required input")
                continue
            path = ensure_absolute_path(value, save_dir)
            resolved.paths[tool_input.name] = path
            resolved.contents[tool_input.name] = self._read_input(tool_input, path)
        return resolved

    def _thinking_enabled(self, options: Dict[str, str]) -> bool:
        return (_truthy(options.pop("thinking", False)) or self.definition.thinking
                or self.context.config.enable_thinking)

    def _use_native_thinking(self, thinking: bool) -> bool:
        return thinking and self.context.adapter.capabilities.supports_native_thinking

    def build_prompt(self, template: str, inputs: ResolvedInputs, inline_document: bool,
                     thinking: bool) -> str:
        """Assemble the prompt text for one run."""
        sections: List[str] = []
        document_input = self.definition.document_input

        if inline_document and document_input and inputs.contents.get(document_input):
            sections.append(_section(_section_label(document_input), inputs.contents[document_input]))

        for input_name, content in inputs.contents.items():
            if input_name == document_input or not content.strip():
                continue
            sections.append(_section(_section_label(input_name), content))

        if inputs.options:
            settings = "\n".join(f"- {key}: {value}" for key, value in inputs.options.items())
            sections.append(f"Settings:\n{settings}")

        sections.append(template.strip())
        prompt = "\n\n".join(sections)
        if thinking and not self._use_native_thinking(thinking):
            prompt += THINKING_INSTRUCTIONS
        return prompt

    def build_request(self, prompt: str, prepared: Optional[PrepareResult],
                      thinking: bool) -> GenerationRequest:
        adapter = self.context.adapter
        cache = prepared.cache_handle if prepared else None
        file_handle = prepared.file_handle if prepared else None
        if file_handle is not None and not (file_handle.is_active and
                                            adapter.capabilities.supports_file_reference):
            file_handle = None
        return GenerationRequest(
            model=(prepared.active_model if prepared and prepared.active_model else adapter.model),
            prompt=prompt,
            cached_content=cache.name if cache else None,
            file_handle=None if cache else file_handle,
            system_instruction=None if cache else self.context.registry.system_instruction,
            include_thoughts=self._use_native_thinking(thinking),
        )

    def missing_prompt_result(self) -> ToolResult:
        help_text = self.context.prompts.missing_prompt_help(self.name, self.title)
        self.emit(help_text)
        logger.warning(f"No prompt available for {self.name}")
        return ToolResult(success=False, tool_name=self.name, error_type="missing_prompt",
                          errors=[f"Prompt file not found: {self.context.prompts.prompt_path(self.name)}"])

    def _emit_prepare(self, prepared: PrepareResult) -> None:
        for message in prepared.messages:
            self.emit(f"{message}\n")
        if prepared.errors:
            self.emit("\n--- Errors encountered during preparation ---\n")
            for error in prepared.errors:
                self.emit(f"ERROR: {error}\n")

    def _emit_banner(self) -> None:
        self.emit("\nSending request to AI API . . .\n")
        self.emit("\n" + "*" * 76 + "\n")
        self.emit(f"*  Standby, running {self.title} . . .\n")
        self.emit("*  This process typically takes several minutes.\n")
        self.emit("*" * 76 + "\n\n")

    # Streaming

    async def stream(self, request: GenerationRequest, thinking: bool,
                     cancel_token: Optional[CancellationToken],
                     turn: Optional[StreamingTurn] = None) -> StreamingTurn:
        """
        Stream a response into ``turn``, echoing transport failures before
        propagating them. Task cancellation is not caught here; ``turn`` still
        holds the answer received so far when it propagates.
        """
        adapter = self.context.adapter
        demux = StreamDemultiplexer(
            on_answer=self.emit,
            on_thinking=self.context.emit_thinking,
            extract_thinking=thinking and not request.include_thoughts,
            lookback=self.context.config.marker_lookback,
            turn=turn or StreamingTurn(prompt=request.prompt),
        )
        try:
            return await demux.consume(adapter.generate_stream(request), cancel_token)
        except Exception as e:
            self.emit(f"\nAPI Error: {e}\n")
            logger.error(f"Streaming failed for {self.name}: {e}")
            raise TransportError(str(e), recoverable=adapter.is_recoverable_error(e)) from e

    async def _finish_stats(self, turn: StreamingTurn, prompt_tokens: int) -> ToolStats:
        accountant = self.context.accountant
        stats = ToolStats(
            prompt_tokens=prompt_tokens,
            elapsed_seconds=turn.elapsed_seconds,
            word_count=count_words(turn.answer),
            thinking_chars=len(turn.thinking),
        )
        stats.response_tokens = await accountant.count_tokens(turn.answer)
        if turn.usage is not None:
            stats.prompt_tokens = stats.prompt_tokens or turn.usage.prompt_tokens
            stats.response_tokens = stats.response_tokens or turn.usage.response_tokens

        self.emit(f"\nCompleted in: ⏰ {stats.elapsed_display}.\n")
        self.emit(f"Report has approximately {stats.word_count} words.\n")
        self.emit(f"Response token count: {stats.response_tokens}\n")
        return stats

    def _save_report(self, save_dir: str, turn: StreamingTurn, prompt_tokens: int,
                     response_tokens: int) -> str:
        report_path = write_report(save_dir, self.name, self.title, turn.answer,
                                   prompt_tokens, response_tokens, now=self.context.clock())
        self.context.session_files.add_file(self.name, report_path)
        self.emit(f"Report saved to: {report_path}\n")
        return report_path

    def _save_interrupted(self, save_dir: str, turn: StreamingTurn, prompt_tokens: int) -> None:
        turn.cancelled = True
        response_tokens = turn.usage.response_tokens if turn.usage else 0
        self.emit("\nGeneration interrupted.\n")
        self._save_report(save_dir, turn, prompt_tokens, response_tokens)
        logger.warning(f"{self.name} interrupted after {len(turn.answer)} characters")

    # Counting

    async def count_document(self, save_dir: str, inputs: ResolvedInputs) -> ToolResult:
        """
        Count the words and tokens of the document input and save a summary.

        Nothing is uploaded and no generation is requested. A document that
        does not fit the model's context window is reported with
        ``error_type='document_too_large'``.
        """
        document_input = self.definition.document_input
        path = inputs.paths[document_input]
        text = inputs.contents[document_input]

        self.emit("Counting words...\n")
        word_count = count_words(text)
        self.emit(f"Word count: {word_count:,}\n")
        self.emit("Counting tokens...\n")
        token_count = await self.context.accountant.count_tokens(text)
        self.emit(f"Token count: {token_count:,}\n")
        stats = ToolStats(prompt_tokens=token_count, word_count=word_count)

        context_window = self.context.adapter.capabilities.max_context_length
        if token_count >= context_window:
            message = (f"Document is too large: {token_count:,} tokens does not fit the "
                       f"{context_window:,} token context window")
            self.emit(f"\n{message}\n")
            logger.warning(message)
            return ToolResult(success=False, tool_name=self.name, stats=stats,
                              error_type="document_too_large", errors=[message])

        now = self.context.clock()
        report = count_report(path, word_count, token_count, now)
        self.emit(f"\n{report}\n")
        stem = os.path.splitext(os.path.basename(path))[0]
        report_path = write_output_file(report, save_dir,
                                        f"{self.name}_{stem}_{compact_timestamp(now)}.txt")
        self.context.session_files.add_file(self.name, report_path)
        self.emit(f"Report saved to: {report_path}\n")
        return ToolResult(success=True, tool_name=self.name, output_files=[report_path], stats=stats)

    # Entry point

    async def execute(self, options: Optional[Dict[str, str]] = None,
                      cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        """
        Run the tool.

        Args:
            options: Input paths and text options keyed by input name, plus
                optional ``save_dir`` and ``thinking``.
            cancel_token: Stops the stream early; partial output is still saved.

        Returns:
            A ToolResult. A missing prompt is reported with
            ``error_type='missing_prompt'`` instead of raising.

        Raises:
            ConfigurationError: No save directory is configured.
            RequiredInputMissing: A required input file is missing or empty.
            TransportError: The model transport failed while streaming.
            asyncio.CancelledError: The task was cancelled; the partial
                report has been saved.
        """
        options = dict(options or {})
        self.context.session_files.clear(self.name)
        logger.info(f"Executing {self.title}")

        save_dir = self._resolve_save_dir(options)
        thinking = self._thinking_enabled(options)
        inputs = self._resolve_inputs(options, save_dir)

        if not self.definition.generates:
            return await self.count_document(save_dir, inputs)

        template = self.context.prompts.get_prompt(self.name)
        if template is None:
            return self.missing_prompt_result()

        prepared = None
        capabilities = self.context.adapter.capabilities
        can_reference = capabilities.supports_file_reference
        document_input = self.definition.document_input
        if document_input and document_input in inputs.paths:
            document = inputs.contents.get(document_input, "")
            document_tokens = await self.context.accountant.count_tokens(document)
            self.emit(f"Document: {count_words(document)} words, {document_tokens} tokens.\n")
            if capabilities.supports_caching or can_reference:
                prepared = await self.context.registry.prepare(inputs.paths[document_input])
                self._emit_prepare(prepared)
            else:
                self.emit(f"{self.context.adapter.provider_name} cannot attach text files; "
                          "sending the full document with the prompt.\n")

        inline_document = prepared is None or (prepared.cache_handle is None and
                                               (prepared.file_handle is None or
                                                not prepared.file_handle.is_active or
                                                not can_reference))
        if prepared is not None and inline_document:
            self.emit("No usable remote file or cache; sending the full document with the prompt.\n")

        prompt = self.build_prompt(template, inputs, inline_document, thinking)
        request = self.build_request(prompt, prepared, thinking)
        prompt_tokens = await self.context.accountant.count_tokens(prompt)

        self._emit_banner()
        turn = StreamingTurn(prompt=prompt)
        try:
            await self.stream(request, thinking, cancel_token, turn)
        except asyncio.CancelledError:
            self._save_interrupted(save_dir, turn, prompt_tokens)
            raise
        stats = await self._finish_stats(turn, prompt_tokens)

        report_path = self._save_report(save_dir, turn, stats.prompt_tokens, stats.response_tokens)

        if (self.definition.appends_to and self.definition.appends_to in inputs.paths
                and turn.answer.strip() and not turn.cancelled):
            target = inputs.paths[self.definition.appends_to]
            append_to_manuscript(target, turn.answer, backup=self.context.config.backup_manuscript)
            self.emit(f"Appended to: {target}\n")

        result = ToolResult(
            success=not turn.cancelled,
            tool_name=self.name,
            output_files=[report_path],
            stats=stats,
            messages=list(prepared.messages) if prepared else [],
            errors=list(prepared.errors) if prepared else [],
        )
        if turn.cancelled:
            result.error_type = "cancelled"
            self.emit("\nGeneration cancelled; partial output was saved.\n")
        return result


async def execute_tool(tool_name: str, options: Optional[Dict[str, str]], context: ToolContext,
                       cancel_token: Optional[CancellationToken] = None) -> ToolResult:
    """Look up ``tool_name`` in the catalogue and run it."""
    definition = get_tool(tool_name)
    if definition.name == "chapter_writer":
        from .chapter_writer import ChapterWriter
        tool: AnalysisTool = ChapterWriter(definition, context)
    else:
        tool = AnalysisTool(definition, context)
    return await tool.execute(options, cancel_token=cancel_token)


def parse_option_pairs(pairs: Tuple[str, ...]) -> Dict[str, str]:
    """Turn ``("key=value", ...)`` into a dict."""
    options: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected key=value, got '{pair}'")
        options[key.strip()] = value.strip()
    return options
