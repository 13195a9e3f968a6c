import asyncio

import pytest

from conftest import text_chunks
from writerkit.core.chapter_writer import extract_chapter_number, find_first_missing_chapter
from writerkit.core.errors import RequiredInputMissing
from writerkit.core.executor import execute_tool

OUTLINE = """Part One

Chapter 1: The Storm
Rain over the harbor.

Chapter 3: The Lighthouse
Climbing the stairs.

Chapter 2: The Letter
A letter arrives.
"""


class TestFindFirstMissingChapter:
    def test_empty_manuscript_starts_at_lowest_number(self):
        assert find_first_missing_chapter(OUTLINE, "") == "Chapter 1: The Storm"

    def test_skips_written_chapters_in_numeric_order(self):
        manuscript = "Chapter 1: The Storm\n\nRain hammered the harbor.\n"
        assert find_first_missing_chapter(OUTLINE, manuscript) == "Chapter 2: The Letter"

    def test_gap_in_manuscript_is_found(self):
        manuscript = "Chapter 1: The Storm\n\ntext\n\nChapter 3: The Lighthouse\n\nmore"
        assert find_first_missing_chapter(OUTLINE, manuscript) == "Chapter 2: The Letter"

    def test_everything_written(self):
        manuscript = ("Chapter 1: The Storm\n\na\n\nChapter 2: The Letter\n\nb\n\n"
                      "Chapter 3: The Lighthouse\n\nc")
        assert find_first_missing_chapter(OUTLINE, manuscript) is None

    def test_outline_without_headings(self):
        assert find_first_missing_chapter("Just some notes.", "") is None


class TestExtractChapterNumber:
    @pytest.mark.parametrize("heading,number,title", [
        ("Chapter 9: The Return", 9, "The Return"),
        ("chapter 12:  Lower Case", 12, "Lower Case"),
        ("9: The Return", 9, "The Return"),
        ("9. The Return", 9, "The Return"),
        ("Part II - Chapter 4 - Night Falls", 4, "Night Falls"),
    ])
    def test_accepted_formats(self, heading, number, title):
        parsed = extract_chapter_number(heading)
        assert parsed.number == number
        assert parsed.title == title

    def test_number_is_zero_padded(self):
        assert extract_chapter_number("Chapter 7: Seven").formatted == "007"
        assert extract_chapter_number("Chapter 123: Many").formatted == "123"
        assert extract_chapter_number("7: Seven").full == "Chapter 7: Seven"

    def test_unrecognized_format(self):
        with pytest.raises(ValueError, match="Chapter format not recognized"):
            extract_chapter_number("Prologue")


class TestChapterWriter:
    @pytest.fixture
    def chapter_project(self, tool_context, project):
        save_dir, _ = project
        (save_dir / "outline.txt").write_text(OUTLINE, encoding="utf-8")
        tool_context.prompts.prompt_path("chapter_writer").write_text(
            "Write the next chapter.", encoding="utf-8"
        )
        return save_dir

    def test_writes_and_appends_missing_chapter(self, tool_context, fake_transport, chapter_project):
        save_dir = chapter_project
        fake_transport.chunks = text_chunks("Chapter 2: The Letter\n\n", "The envelope was damp.")

        result = asyncio.run(execute_tool("chapter_writer", {}, tool_context))

        assert result.success
        chapter_file = save_dir / "002_chapter_20240101T000000.txt"
        assert chapter_file.read_text(encoding="utf-8") == "Chapter 2: The Letter\n\nThe envelope was damp."
        manuscript = (save_dir / "manuscript.txt").read_text(encoding="utf-8")
        assert manuscript == (
            "Chapter 1: The Storm\n\nRain hammered the harbor.\n\n\n"
            "Chapter 2: The Letter\n\nThe envelope was damp."
        )
        assert tool_context.session_files.get_files("chapter_writer") == result.output_files

    def test_everything_inline_without_remote_resources(self, tool_context, fake_transport, chapter_project):
        fake_transport.chunks = text_chunks("Chapter 2: The Letter\n\ntext")

        asyncio.run(execute_tool("chapter_writer", {"lang": "French"}, tool_context))
        request = fake_transport.requests[0]
        log = "".join(tool_context.log)

        assert fake_transport.calls["upload_file"] == 0
        assert fake_transport.calls["create_cache"] == 0
        assert request.cached_content is None
        assert "=== OUTLINE ===" in request.prompt
        assert "=== MANUSCRIPT ===" in request.prompt
        assert "Write Chapter 2: The Letter in full." in request.prompt
        assert "- lang: French" in request.prompt
        assert "Continuing without world information." in log

    def test_backup_before_append(self, tool_context, fake_transport, chapter_project):
        save_dir = chapter_project
        tool_context.config.backup_manuscript = True
        fake_transport.chunks = text_chunks("Chapter 2: The Letter\n\ntext")

        asyncio.run(execute_tool("chapter_writer", {}, tool_context))

        backups = list(save_dir.glob("manuscript_backup_*.txt"))
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8").startswith("Chapter 1: The Storm")

    def test_no_missing_chapter(self, tool_context, fake_transport, chapter_project):
        save_dir = chapter_project
        (save_dir / "manuscript.txt").write_text(
            "Chapter 1: The Storm\n\na\n\nChapter 2: The Letter\n\nb\n\nChapter 3: The Lighthouse\n\nc",
            encoding="utf-8",
        )

        result = asyncio.run(execute_tool("chapter_writer", {}, tool_context))

        assert result.success is False
        assert result.error_type == "no_missing_chapter"
        assert fake_transport.calls["generate_stream"] == 0

    def test_outline_is_required(self, tool_context, project):
        tool_context.prompts.prompt_path("chapter_writer").write_text("Write.", encoding="utf-8")

        with pytest.raises(RequiredInputMissing):
            asyncio.run(execute_tool("chapter_writer", {}, tool_context))

    def test_manuscript_placeholder_is_created(self, tool_context, fake_transport, chapter_project):
        save_dir = chapter_project
        fake_transport.chunks = text_chunks("Chapter 1: The Storm\n\nWind.")

        result = asyncio.run(execute_tool("chapter_writer", {"manuscript": "new_book.txt"}, tool_context))

        assert result.success
        assert (save_dir / "001_chapter_20240101T000000.txt").exists()
        assert (save_dir / "new_book.txt").read_text(encoding="utf-8") == "\n\nChapter 1: The Storm\n\nWind."
