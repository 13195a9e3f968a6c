"""Terminal output for writerkit.

The console is the single output sink of a run: tool progress lines and the
streamed answer go through :meth:`OutputConsole.emit`, reasoning goes through
:meth:`OutputConsole.emit_thinking` and status lines through the
``print_*`` helpers.
"""

import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


class StatusType(Enum):
    """Standard status types with associated symbols."""
    SUCCESS = ("[✓]", "success", "green")
    ERROR = ("[x]", "error", "red")
    WARNING = ("[!]", "warning", "yellow")
    INFO = ("[!]", "info", "cyan")
    RUNNING = ("[~]", "running", "blue")


@dataclass
class ThemeColors:
    """Color definitions for a theme."""
    info: str
    warning: str
    error: str
    success: str
    highlight: str
    path: str
    number: str
    thinking: str
    heading: str
    muted: str


THEMES = {
    'manhattan': ThemeColors(
        info='cyan',
        warning='yellow',
        error='red',
        success='green',
        highlight='bright_cyan',
        path='white',
        number='bright_blue',
        thinking='dim italic',
        heading='bright_yellow',
        muted='bright_black',
    ),
    'sunset': ThemeColors(
        info='orange3',
        warning='yellow',
        error='red3',
        success='green',
        highlight='bold orange1',
        path='wheat1',
        number='orange1',
        thinking='dim italic',
        heading='dark_orange3',
        muted='grey50',
    ),
}


class OutputConsole:
    """Themed console with a plain-text mode for pipes and tests."""

    def __init__(self, theme: str = "manhattan", file: Optional[Any] = None,
                 force_plain: bool = False, show_thinking: bool = True):
        self.theme_name = theme
        self.theme_colors = THEMES.get(theme, THEMES['manhattan'])
        self.file = file or sys.stdout
        self.show_thinking = show_thinking
        self.use_rich = not force_plain and self._should_use_rich_terminal()

        self.console = Console(
            theme=self._create_rich_theme(),
            file=self.file,
            force_terminal=self.use_rich,
            no_color=not self.use_rich,
            highlight=False,
        )

    def _should_use_rich_terminal(self) -> bool:
        if os.environ.get('NO_COLOR'):
            return False
        if os.environ.get('FORCE_COLOR'):
            return True
        return hasattr(self.file, 'isatty') and self.file.isatty()

    def _create_rich_theme(self) -> Theme:
        colors = self.theme_colors
        return Theme({
            'info': colors.info,
            'warning': colors.warning,
            'error': colors.error,
            'success': colors.success,
            'highlight': colors.highlight,
            'path': colors.path,
            'number': colors.number,
            'thinking': colors.thinking,
            'heading': colors.heading,
            'muted': colors.muted,
        })

    def _write(self, text: str, style: Optional[str] = None) -> None:
        if self.use_rich:
            self.console.print(Text(text, style=style or ""), end="", soft_wrap=True)
        else:
            self.file.write(text)
        self.file.flush()

    # Sinks handed to the tool engine

    def emit(self, text: str) -> None:
        """Write streamed text verbatim; callers include their own newlines."""
        self._write(text)

    def emit_thinking(self, text: str) -> None:
        if self.show_thinking:
            self._write(text, style="thinking")

    # Status lines

    def print(self, *args, **kwargs):
        self.console.print(*args, **kwargs)

    def print_status(self, status: StatusType, message: str, prefix: str = ""):
        """Print a status line with icon."""
        icon, _, color = status.value
        if self.use_rich:
            status_text = Text()
            if prefix:
                status_text.append(prefix + " ")
            status_text.append(f"{icon} ", style=color)
            status_text.append(message)
            self.console.print(status_text)
        else:
            print(f"{prefix}{icon} {message}", file=self.file)

    def print_error(self, message: str):
        self.print_status(StatusType.ERROR, message)

    def print_success(self, message: str):
        self.print_status(StatusType.SUCCESS, message)

    def print_info(self, message: str):
        self.print_status(StatusType.INFO, message)

    def print_warning(self, message: str):
        self.print_status(StatusType.WARNING, message)

    def print_table(self, title: str, columns: Iterable[str], rows: Iterable[Iterable[Any]]):
        """Render rows as a table; plain mode prints tab separated lines."""
        columns = list(columns)
        if not self.use_rich:
            print("\t".join(columns), file=self.file)
            for row in rows:
                print("\t".join(str(cell) for cell in row), file=self.file)
            return
        table = Table(title=title, header_style="heading", border_style="muted")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        self.console.print(table)
