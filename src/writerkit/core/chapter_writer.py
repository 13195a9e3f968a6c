"""
Chapter writer.

Finds the first chapter listed in the outline that the manuscript does not
contain yet, asks the model to write it and appends the result to the
manuscript. Everything is sent inline; no remote file or cache is used.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .executor import AnalysisTool, ResolvedInputs
from .models import ToolResult
from .workspace import append_to_manuscript, compact_timestamp, write_output_file
from ..ai.models.common import GenerationRequest, StreamingTurn
from ..ai.streaming import CancellationToken

logger = logging.getLogger(__name__)

_MANUSCRIPT_CHAPTER = re.compile(r"Chapter\s+(\d+):\s+(.*?)(?=\n\n|\n*$)", re.S)
_OUTLINE_CHAPTER = re.compile(r"^Chapter\s+(\d+):\s+(.+)$", re.M)

_HEADING_PATTERNS = (
    re.compile(r"^Chapter\s+(\d+):\s+(.+)$", re.I),
    re.compile(r"^(\d+):\s+(.+)$"),
    re.compile(r"^(\d+)\.\s+(.+)$"),
    re.compile(r"Chapter\s+(\d+)[^a-zA-Z0-9]*(.+)", re.I),
)


@dataclass(frozen=True)
class ChapterHeading:
    number: int
    title: str

    @property
    def formatted(self) -> str:
        """Zero-padded number used in file names, e.g. ``007``."""
        return f"{self.number:03d}"

    @property
    def full(self) -> str:
        return f"Chapter {self.number}: {self.title}"


def _chapters(pattern: re.Pattern, text: str) -> List[Tuple[int, str]]:
    return sorted(((int(number), title.strip()) for number, title in pattern.findall(text)),
                  key=lambda chapter: chapter[0])


def find_first_missing_chapter(outline: str, manuscript: str) -> Optional[str]:
    """
    Return the first ``Chapter N: Title`` line of the outline whose number
    does not appear as a chapter heading in the manuscript.
    """
    written = {number for number, _ in _chapters(_MANUSCRIPT_CHAPTER, manuscript)}
    for number, title in _chapters(_OUTLINE_CHAPTER, outline):
        if number not in written:
            return f"Chapter {number}: {title}"
    return None


def extract_chapter_number(heading: str) -> ChapterHeading:
    """
    Parse a chapter heading in one of the accepted forms.

    ``Chapter 3: Title``, ``3: Title`` and ``3. Title`` are accepted, as is
    any line containing ``Chapter 3`` followed by a title.

    Raises:
        ValueError: If no number and title can be found.
    """
    heading = heading.strip()
    for pattern in _HEADING_PATTERNS:
        match = pattern.search(heading)
        if match:
            return ChapterHeading(number=int(match.group(1)), title=match.group(2).strip())
    raise ValueError(f"Chapter format not recognized: {heading!r}. "
                     "Expected 'Chapter N: Title', 'N: Title' or 'N. Title'.")


class ChapterWriter(AnalysisTool):
    """Writes the next missing chapter and appends it to the manuscript."""

    def build_chapter_prompt(self, template: str, inputs: ResolvedInputs,
                             heading: ChapterHeading, thinking: bool) -> str:
        instruction = (
            f"Write {heading.full} in full. Begin the text with the exact heading "
            f"'{heading.full}' and do not write any other chapter."
        )
        return self.build_prompt(f"{template.strip()}\n\n{instruction}", inputs,
                                 inline_document=False, thinking=thinking)

    def _save_chapter(self, save_dir: str, heading: ChapterHeading, turn: StreamingTurn) -> str:
        file_name = f"{heading.formatted}_chapter_{compact_timestamp(self.context.clock())}.txt"
        chapter_path = write_output_file(turn.answer, save_dir, file_name)
        self.context.session_files.add_file(self.name, chapter_path)
        self.emit(f"Chapter saved to: {chapter_path}\n")
        return chapter_path

    async def execute(self, options: Optional[Dict[str, str]] = None,
                      cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        options = dict(options or {})
        self.context.session_files.clear(self.name)
        logger.info(f"Executing {self.title}")

        save_dir = self._resolve_save_dir(options)
        thinking = self._thinking_enabled(options)
        inputs = self._resolve_inputs(options, save_dir)

        template = self.context.prompts.get_prompt(self.name)
        if template is None:
            return self.missing_prompt_result()

        missing = find_first_missing_chapter(inputs.contents.get("outline", ""),
                                             inputs.contents.get("manuscript", ""))
        if missing is None:
            self.emit("No missing chapter found: every outline chapter is already in the manuscript.\n")
            return ToolResult(success=False, tool_name=self.name, error_type="no_missing_chapter",
                              errors=["No missing chapter found in the outline"])
        heading = extract_chapter_number(missing)
        self.emit(f"Next chapter to write: {heading.full}\n")

        prompt = self.build_chapter_prompt(template, inputs, heading, thinking)
        request = GenerationRequest(
            model=self.context.adapter.model,
            prompt=prompt,
            system_instruction=self.context.registry.system_instruction,
            include_thoughts=self._use_native_thinking(thinking),
        )
        prompt_tokens = await self.context.accountant.count_tokens(prompt)

        self._emit_banner()
        turn = StreamingTurn(prompt=prompt)
        try:
            await self.stream(request, thinking, cancel_token, turn)
        except asyncio.CancelledError:
            turn.cancelled = True
            self.emit("\nGeneration interrupted; the partial chapter was not appended.\n")
            self._save_chapter(save_dir, heading, turn)
            raise
        stats = await self._finish_stats(turn, prompt_tokens)

        chapter_path = self._save_chapter(save_dir, heading, turn)

        result = ToolResult(success=not turn.cancelled, tool_name=self.name,
                            output_files=[chapter_path], stats=stats)
        if turn.cancelled:
            result.error_type = "cancelled"
            self.emit("\nGeneration cancelled; the partial chapter was not appended.\n")
            return result

        if turn.answer.strip():
            manuscript_path = inputs.paths["manuscript"]
            backup = append_to_manuscript(manuscript_path, turn.answer,
                                          backup=self.context.config.backup_manuscript)
            if backup:
                self.emit(f"Manuscript backed up to: {backup}\n")
            self.emit(f"Chapter appended to: {manuscript_path}\n")
        return result
