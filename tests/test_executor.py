import asyncio
import os
from datetime import datetime, timezone

import pytest

from conftest import FakeTransport, text_chunks
from writerkit.ai.models.capabilities import TransportCapabilities, get_openai_capabilities
from writerkit.ai.models.common import StreamChunk, TokenUsage
from writerkit.ai.streaming import THINKING_INSTRUCTIONS, CancellationToken
from writerkit.core.errors import (
    ConfigurationError,
    RequiredInputMissing,
    TransportError,
    UnknownToolError,
)
from writerkit.core.executor import ToolContext, execute_tool, parse_option_pairs


def _write_prompt(context, tool_name, text="Analyze the manuscript."):
    path = context.prompts.prompt_path(tool_name)
    path.write_text(text, encoding="utf-8")
    return path


def _run(context, tool_name, options=None, cancel_token=None):
    return asyncio.run(execute_tool(tool_name, options or {}, context, cancel_token))


class SlowTransport(FakeTransport):
    """Sends one fragment, then stalls until the run is cancelled."""

    async def generate_stream(self, request):
        self.calls["generate_stream"] += 1
        self.requests.append(request)
        try:
            yield StreamChunk(text="partial chapter text ")
            await asyncio.sleep(10)
            yield StreamChunk(text="never arrives")
        finally:
            self.stream_closed = True


async def _run_and_cancel(context, tool_name, delay=0.2):
    task = asyncio.ensure_future(execute_tool(tool_name, {}, context))
    await asyncio.sleep(delay)
    task.cancel()
    await task


class TestReportOutput:
    def test_report_name_and_header(self, tool_context, fake_transport, project):
        save_dir, _ = project
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("The prose ", "flows well.")

        result = _run(tool_context, "rhythm_analyzer")

        assert result.success
        assert result.error_type is None
        report = save_dir / "rhythm_analyzer_20240101T000000.txt"
        assert result.output_files == [str(report.resolve())]
        lines = report.read_text(encoding="utf-8").split("\n")
        assert lines[0] == "=== RHYTHM ANALYZER REPORT ==="
        assert lines[1] == "Date: Monday, January 1, 2024 at 12:00 AM"
        assert lines[2] == "Prompt tokens: 42"
        assert lines[3] == "Response tokens: 42"
        assert lines[4] == ""
        assert lines[5] == "The prose flows well."

    def test_run_log_lines(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("one two three")

        result = _run(tool_context, "rhythm_analyzer")
        log = "".join(tool_context.log)

        assert "Standby, running Rhythm Analyzer" in log
        assert "Completed in: ⏰ 0m " in log
        assert "Report has approximately 3 words." in log
        assert "Response token count: 42" in log
        assert f"Report saved to: {result.output_files[0]}" in log
        assert result.stats.word_count == 3

    def test_report_registered_in_session_files(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("ok")
        tool_context.session_files.add_file("rhythm_analyzer", "/stale/report.txt")
        tool_context.session_files.add_file("copy_editing", "/other/report.txt")

        result = _run(tool_context, "rhythm_analyzer")

        assert tool_context.session_files.get_files("rhythm_analyzer") == result.output_files
        assert tool_context.session_files.get_files("copy_editing") == ["/other/report.txt"]

    def test_usage_metadata_fills_missing_counts(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.capabilities.supports_token_counting = False
        fake_transport.chunks = text_chunks("body", usage=TokenUsage(prompt_tokens=900, response_tokens=7))

        result = _run(tool_context, "rhythm_analyzer")

        assert result.stats.prompt_tokens == 900
        assert result.stats.response_tokens == 7


class TestMissingInputs:
    def test_missing_prompt_is_structured_result(self, tool_context, fake_transport):
        result = _run(tool_context, "rhythm_analyzer")

        assert result.success is False
        assert result.error_type == "missing_prompt"
        assert fake_transport.calls["generate_stream"] == 0
        assert "PROMPT FILE NOT FOUND" in "".join(tool_context.log)
        assert result.to_dict()["errorType"] == "missing_prompt"

    def test_missing_required_input_raises(self, tool_context, project):
        save_dir, _ = project
        _write_prompt(tool_context, "rhythm_analyzer")
        os.remove(save_dir / "manuscript.txt")

        with pytest.raises(RequiredInputMissing):
            _run(tool_context, "rhythm_analyzer")
        assert "Error: Required input manuscript_file" in "".join(tool_context.log)

    def test_missing_save_dir_raises(self, tool_context):
        tool_context.config.save_dir = None

        with pytest.raises(ConfigurationError):
            _run(tool_context, "rhythm_analyzer")

    def test_missing_optional_input_is_noted(self, tool_context, fake_transport):
        _write_prompt(tool_context, "character_analyzer")
        fake_transport.chunks = text_chunks("done")

        result = _run(tool_context, "character_analyzer")
        log = "".join(tool_context.log)

        assert result.success
        assert "Continuing without outline information." in log
        assert "Continuing without world information." in log

    def test_unknown_tool(self, tool_context):
        with pytest.raises(UnknownToolError):
            _run(tool_context, "no_such_tool")


class TestRequestShape:
    def test_cached_request_sends_only_prompt(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer", "Check rhythm.")
        fake_transport.chunks = text_chunks("ok")

        _run(tool_context, "rhythm_analyzer")
        request = fake_transport.requests[0]

        assert request.cached_content == "cachedContents/cache-1"
        assert request.file_handle is None
        assert request.system_instruction is None
        assert request.prompt == "Check rhythm."

    def test_file_without_cache_is_referenced(self, config, project):
        transport = FakeTransport(capabilities=TransportCapabilities(
            supports_file_listing=True,
            supports_file_upload=True,
            supports_file_deletion=True,
            supports_cache_listing=False,
            supports_cache_creation=False,
            supports_cache_deletion=False,
        ))
        transport.chunks = text_chunks("ok")
        context = ToolContext.create(config, transport)
        _write_prompt(context, "rhythm_analyzer")

        _run(context, "rhythm_analyzer")
        request = transport.requests[0]

        assert request.cached_content is None
        assert request.file_handle.name == "files/upload-1"
        assert "=== MANUSCRIPT ===" not in request.prompt

    def test_degraded_prepare_inlines_document(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.max_retries = 0
        fake_transport.fail_list_files = PermissionError("permission denied")
        fake_transport.fail_upload = PermissionError("permission denied")
        fake_transport.fail_list_caches = PermissionError("permission denied")
        fake_transport.chunks = text_chunks("ok")

        result = _run(tool_context, "rhythm_analyzer")
        request = fake_transport.requests[0]
        log = "".join(tool_context.log)

        assert result.success
        assert result.errors
        assert "ERROR: Failed to list files: permission denied" in log
        assert request.cached_content is None
        assert request.file_handle is None
        assert "=== MANUSCRIPT ===" in request.prompt
        assert "Rain hammered the harbor." in request.prompt
        assert request.system_instruction

    def test_openai_transport_inlines_text_document(self, config, project):
        transport = FakeTransport(capabilities=get_openai_capabilities())
        transport.chunks = text_chunks("ok")
        context = ToolContext.create(config, transport)
        _write_prompt(context, "rhythm_analyzer")

        _run(context, "rhythm_analyzer")
        request = transport.requests[0]

        assert request.file_handle is None
        assert request.cached_content is None
        assert "=== MANUSCRIPT ===" in request.prompt
        assert "Rain hammered the harbor." in request.prompt
        assert transport.calls["upload_file"] == 0

    def test_text_options_become_settings(self, tool_context, fake_transport):
        _write_prompt(tool_context, "line_editing")
        fake_transport.chunks = text_chunks("ok")

        _run(tool_context, "line_editing", {"chapter_number": "3"})

        assert "- chapter_number: 3" in fake_transport.requests[0].prompt

    def test_thinking_markers_split_report(self, tool_context, fake_transport, project):
        save_dir, _ = project
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("THINKING: plan first RESPONSE: Final text")

        result = _run(tool_context, "rhythm_analyzer", {"thinking": "true"})
        request = fake_transport.requests[0]

        assert request.prompt.endswith(THINKING_INSTRUCTIONS)
        assert tool_context.thinking_log == [" plan first "]
        report = (save_dir / "rhythm_analyzer_20240101T000000.txt").read_text(encoding="utf-8")
        assert report.endswith("\n\n Final text")
        assert result.stats.thinking_chars == len(" plan first ")


class TestStreamingFailures:
    def test_transport_error_is_echoed_and_raised(self, tool_context, fake_transport):
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("partial", " more")
        fake_transport.fail_stream_after = 1

        with pytest.raises(TransportError) as exc_info:
            _run(tool_context, "rhythm_analyzer")

        assert exc_info.value.recoverable is True
        assert "API Error: connection reset" in "".join(tool_context.log)
        assert fake_transport.calls["generate_stream"] == 1

    def test_cancelled_run_saves_partial_report(self, tool_context, fake_transport, project):
        save_dir, _ = project
        _write_prompt(tool_context, "rhythm_analyzer")
        fake_transport.chunks = text_chunks("never sent")

        async def run():
            token = CancellationToken()
            token.cancel()
            return await execute_tool("rhythm_analyzer", {}, tool_context, token)

        result = asyncio.run(run())

        assert result.success is False
        assert result.error_type == "cancelled"
        assert (save_dir / "rhythm_analyzer_20240101T000000.txt").exists()
        assert "Generation cancelled" in "".join(tool_context.log)

    def test_task_cancellation_saves_partial_report(self, config, project):
        save_dir, _ = project
        transport = SlowTransport()
        context = ToolContext.create(config, transport,
                                     clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc))
        _write_prompt(context, "rhythm_analyzer")

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(_run_and_cancel(context, "rhythm_analyzer"))

        report_path = save_dir / "rhythm_analyzer_20240101T000000.txt"
        assert "partial chapter text" in report_path.read_text(encoding="utf-8")
        assert context.session_files.get_files("rhythm_analyzer") == [str(report_path.resolve())]
        assert transport.stream_closed

    def test_task_cancellation_saves_partial_chapter_without_appending(self, config, project):
        save_dir, _ = project
        (save_dir / "outline.txt").write_text(
            "Chapter 1: The Storm\n\nChapter 2: The Letter\n", encoding="utf-8")
        manuscript_before = (save_dir / "manuscript.txt").read_text(encoding="utf-8")
        transport = SlowTransport()
        context = ToolContext.create(config, transport,
                                     clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc))
        _write_prompt(context, "chapter_writer", "Write the next chapter.")

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(_run_and_cancel(context, "chapter_writer"))

        chapter = (save_dir / "002_chapter_20240101T000000.txt").read_text(encoding="utf-8")
        assert chapter == "partial chapter text "
        assert (save_dir / "manuscript.txt").read_text(encoding="utf-8") == manuscript_before


class TestCountingTool:
    def test_counts_without_prompt_or_generation(self, tool_context, fake_transport, project):
        save_dir, _ = project

        result = _run(tool_context, "tokens_words_counter")

        report_path = save_dir / "tokens_words_counter_manuscript_20240101T000000.txt"
        report = report_path.read_text(encoding="utf-8")
        log = "".join(tool_context.log)
        assert result.success
        assert result.error_type is None
        assert result.output_files == [str(report_path.resolve())]
        assert report.startswith("MANUSCRIPT ANALYSIS REPORT  Monday, January 1, 2024")
        assert "Total Human Words: 8\n" in report
        assert "Total AI Tokens: 42\n" in report
        assert "Words per token ratio: 0.19\n" in report
        assert "Word count: 8" in log and "Token count: 42" in log
        assert result.stats.word_count == 8
        assert fake_transport.calls["generate_stream"] == 0
        assert fake_transport.calls["upload_file"] == 0
        assert tool_context.session_files.get_files("tokens_words_counter") == result.output_files

    def test_counts_another_file(self, tool_context, fake_transport, project):
        save_dir, _ = project
        (save_dir / "notes.md").write_text("one two three", encoding="utf-8")

        result = _run(tool_context, "tokens_words_counter", {"input_file": "notes.md"})

        assert result.success
        assert (save_dir / "tokens_words_counter_notes_20240101T000000.txt").exists()

    def test_document_larger_than_context_window(self, tool_context, fake_transport, project):
        save_dir, _ = project
        fake_transport.capabilities.max_context_length = 40

        result = _run(tool_context, "tokens_words_counter")

        assert result.success is False
        assert result.error_type == "document_too_large"
        assert result.output_files == []
        assert "Document is too large" in "".join(tool_context.log)
        assert not list(save_dir.glob("tokens_words_counter_*"))
        assert fake_transport.calls["generate_stream"] == 0


class TestAppendingTools:
    def test_brainstorm_appends_to_ideas(self, tool_context, fake_transport, project):
        save_dir, _ = project
        _write_prompt(tool_context, "brainstorm", "More ideas please.")
        fake_transport.chunks = text_chunks("A lighthouse keeper.")

        result = _run(tool_context, "brainstorm")

        assert result.success
        assert (save_dir / "ideas.txt").read_text(encoding="utf-8") == "\n\nA lighthouse keeper."
        assert "Creating a new empty file" in "".join(tool_context.log)


class TestParseOptionPairs:
    def test_pairs(self):
        assert parse_option_pairs(("lang=French", "pov = first person")) == {
            "lang": "French", "pov": "first person",
        }

    def test_invalid_pair(self):
        with pytest.raises(ValueError):
            parse_option_pairs(("nonsense",))
