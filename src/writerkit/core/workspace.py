"""
Project workspace file handling.

Inputs are UTF-8 text files resolved against the project (save) directory;
outputs are UTF-8 text files written to that same directory with
``<name>_<YYYYMMDDTHHMMSS>.txt`` names.
"""

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .errors import RequiredInputMissing

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_absolute_path(file_path: Optional[str], base_path: Optional[PathLike]) -> Optional[str]:
    """
    Resolve ``file_path`` against ``base_path`` unless it is already absolute.

    Paths starting with ``~`` are expanded rather than joined.
    """
    if not file_path:
        return file_path
    if file_path.startswith("~"):
        return os.path.expanduser(file_path)
    if os.path.isabs(file_path) or base_path is None:
        return file_path
    return os.path.join(str(base_path), file_path)


def read_required(path: PathLike) -> str:
    """Read an input that must exist and contain text."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise RequiredInputMissing(str(path)) from None
    if not content.strip():
        raise RequiredInputMissing(str(path), "File is empty")
    return content


def read_optional(path: Optional[PathLike]) -> str:
    """Read optional context; a missing file yields empty content."""
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info(f"Optional input not found, continuing without it: {path}")
        return ""


def read_or_create_placeholder(path: PathLike) -> str:
    """Read a work-in-progress file, creating it empty when missing."""
    path = Path(path)
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
        logger.info(f"Created empty placeholder file: {path}")
        return ""
    return path.read_text(encoding="utf-8")


def compact_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp such as ``20240101T000000``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y%m%dT%H%M%S")


def human_date(now: Optional[datetime] = None) -> str:
    """Date line for report headers, e.g. ``Monday, January 1, 2024 at 12:00 AM``."""
    now = now or datetime.now()
    hour = now.hour % 12 or 12
    return f"{now:%A}, {now:%B} {now.day}, {now.year} at {hour}:{now:%M} {now:%p}"


def write_output_file(content: str, save_dir: PathLike, file_name: str) -> str:
    """Write ``content`` into ``save_dir`` and return the absolute path."""
    save_dir = Path(save_dir)
    save_dir.mkdir(parents=True, exist_ok=True)
    output_path = save_dir / file_name
    output_path.write_text(content, encoding="utf-8")
    return str(output_path.resolve())


def report_header(title: str, prompt_tokens: int, response_tokens: int,
                  now: Optional[datetime] = None) -> str:
    return (
        f"=== {title.upper()} REPORT ===\n"
        f"Date: {human_date(now)}\n"
        f"Prompt tokens: {prompt_tokens}\n"
        f"Response tokens: {response_tokens}\n"
        "\n"
    )


def write_report(
    save_dir: PathLike,
    name: str,
    title: str,
    body: str,
    prompt_tokens: int,
    response_tokens: int,
    now: Optional[datetime] = None,
) -> str:
    """
    Persist a tool report with its header block.

    Args:
        save_dir: Project directory receiving the report.
        name: Tool name, used as the filename prefix.
        title: Human title, uppercased into the header.
        body: Response text.
        prompt_tokens: Prompt token count for the header.
        response_tokens: Response token count for the header.
        now: Timestamp for both the filename and the header date.

    Returns:
        Absolute path of the written report.
    """
    now = now or datetime.now(timezone.utc)
    file_name = f"{name.lower()}_{compact_timestamp(now)}.txt"
    header = report_header(title, prompt_tokens, response_tokens, now)
    return write_output_file(header + body, save_dir, file_name)


def count_report(path: PathLike, word_count: int, token_count: int,
                 now: Optional[datetime] = None) -> str:
    """Summary written by the words and tokens counter."""
    ratio = word_count / token_count if token_count else 0.0
    return (
        f"MANUSCRIPT ANALYSIS REPORT  {human_date(now)}\n\n"
        f"File: {path}\n\n"
        "-------\n"
        "SUMMARY\n\n"
        f"Total Human Words: {word_count:,}\n"
        f"Total AI Tokens: {token_count:,}\n"
        f"Words per token ratio: {ratio:.2f}\n"
    )


def backup_file(path: PathLike, now: Optional[datetime] = None) -> Optional[str]:
    """Copy ``path`` next to itself with a timestamp suffix."""
    path = Path(path)
    if not path.exists():
        return None
    backup = path.with_name(f"{path.stem}_backup_{compact_timestamp(now)}{path.suffix}")
    shutil.copy2(path, backup)
    logger.info(f"Backed up {path} to {backup}")
    return str(backup)


def append_to_manuscript(path: PathLike, text: str, backup: bool = False) -> Optional[str]:
    """
    Append a generated chapter to the manuscript.

    Trailing whitespace of the manuscript is normalised so that chapters are
    always separated by a blank line. Returns the backup path, if one was made.
    """
    path = Path(path)
    backup_path = backup_file(path) if backup else None

    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    existing = existing.rstrip() + "\n"
    if not existing.strip():
        existing = "\n\n"
    else:
        existing += "\n\n"

    path.write_text(existing + text, encoding="utf-8")
    return backup_path
