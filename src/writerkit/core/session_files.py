"""In-memory registry of files produced by tool runs.

The shell queries it after a run to discover what was written. Entries are
kept per tool name and are never persisted across process restarts.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, List

from .models import SessionFileRecord

logger = logging.getLogger(__name__)


class SessionFileRegistry:
    """Append-only, per-tool lists of output file paths."""

    def __init__(self):
        self._records: Dict[str, List[SessionFileRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def clear(self, tool_name: str) -> None:
        """Forget outputs of one tool; other tools are untouched."""
        with self._lock:
            self._records.pop(tool_name, None)
        logger.debug(f"Cleared session files for {tool_name}")

    def add_file(self, tool_name: str, path: str) -> SessionFileRecord:
        record = SessionFileRecord(tool_name=tool_name, path=str(path))
        with self._lock:
            self._records[tool_name].append(record)
        logger.debug(f"Registered {path} for {tool_name}")
        return record

    def get_files(self, tool_name: str) -> List[str]:
        """Paths registered for ``tool_name`` in insertion order."""
        with self._lock:
            return [record.path for record in self._records.get(tool_name, [])]

    def get_records(self, tool_name: str) -> List[SessionFileRecord]:
        with self._lock:
            return list(self._records.get(tool_name, []))

    def tool_names(self) -> List[str]:
        with self._lock:
            return [name for name, records in self._records.items() if records]
