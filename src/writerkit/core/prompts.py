"""Tool prompt templates.

Each tool reads its instructions from ``<prompts_dir>/<tool>.txt``, a file
the user may edit at any time. The file is read fresh on every run. When it
is missing or blank and a built-in default exists, the default is written
back to disk and used.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


# Built-in prompt content, keyed by tool name. Tools with an empty entry
# require the user to author a prompt file before they can run.
BUILTIN_PROMPTS: Dict[str, str] = {
    # Editing tools
    "manuscript_to_outline_characters_world": "",
    "narrative_integrity": "",
    "developmental_editing": "",
    "line_editing": "",
    "copy_editing": "",
    "proofreader_spelling": "",
    "proofreader_punctuation": "",
    "proofreader_plot_consistency": "",
    "plot_thread_tracker": "",
    "tense_consistency_checker": "",
    "character_analyzer": "",
    "adjective_adverb_optimizer": "",
    "dangling_modifier_checker": "",
    "rhythm_analyzer": "",
    "crowding_leaping_evaluator": "",
    "conflict_analyzer": "",
    "foreshadowing_tracker": "",
    "kdp_publishing_prep": "",
    "drunken": "",
    # Writing tools
    "brainstorm": "",
    "outline_writer": "",
    "world_writer": "",
    "chapter_writer": "",
}


MISSING_PROMPT_TEMPLATE = """
⛔️ PROMPT FILE NOT FOUND ⛔️

A custom prompt file is required to run this tool.

You need to create or edit the prompt file at:
{path}

Here's how to fix this:
1. The application uses a folder called 'tool-prompts' in your writing directory.
2. Each tool needs its own text file with the AI instructions.
3. For the '{title}' tool, create: "{filename}"
"""


class PromptStore:
    """Resolves the prompt text for a tool from disk or built-in defaults."""

    def __init__(self, prompts_dir: Union[str, Path], defaults: Optional[Dict[str, str]] = None):
        self.prompts_dir = Path(prompts_dir).expanduser()
        self.defaults = BUILTIN_PROMPTS if defaults is None else defaults

    def prompt_path(self, tool_name: str) -> Path:
        return self.prompts_dir / f"{tool_name}.txt"

    def ensure_prompts_dir(self) -> bool:
        """Create the prompts directory; False if that is not possible."""
        try:
            self.prompts_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Error creating prompts directory {self.prompts_dir}: {e}")
            return False

    def _default_for(self, tool_name: str) -> Optional[str]:
        content = self.defaults.get(tool_name, "")
        return content if content.strip() else None

    def _write_default(self, tool_name: str, content: str) -> None:
        if not self.ensure_prompts_dir():
            return
        try:
            self.prompt_path(tool_name).write_text(content, encoding="utf-8")
            logger.info(f"Default prompt written for {tool_name} at {self.prompt_path(tool_name)}")
        except OSError as e:
            logger.error(f"Error writing default prompt for {tool_name}: {e}")

    def get_prompt(self, tool_name: str) -> Optional[str]:
        """
        Return the prompt for ``tool_name`` or None when none is available.

        A blank override file is treated like a missing one: the built-in
        default, if any, replaces it on disk.
        """
        path = self.prompt_path(tool_name)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = None
        except OSError as e:
            logger.error(f"Error reading prompt for {tool_name}: {e}")
            return None

        if content is not None and content.strip():
            logger.debug(f"Using prompt file {path}")
            return content

        default = self._default_for(tool_name)
        if default is None:
            logger.info(f"No prompt available for {tool_name}")
            return None

        logger.info(f"Restoring default prompt for {tool_name}")
        self._write_default(tool_name, default)
        return default

    def initialize_all(self) -> List[str]:
        """Write every non-empty default that has no file yet."""
        created = []
        if not self.ensure_prompts_dir():
            return created
        for tool_name, content in self.defaults.items():
            if not content.strip() or self.prompt_path(tool_name).exists():
                continue
            self._write_default(tool_name, content)
            created.append(tool_name)
        return created

    def missing_prompt_help(self, tool_name: str, title: str) -> str:
        """User-facing explanation of where the prompt file must go."""
        filename = f"{tool_name}.txt"
        return MISSING_PROMPT_TEMPLATE.format(
            path=self.prompt_path(tool_name), title=title, filename=filename
        )
