"""
Logging configuration for writerkit.

Library modules only call ``logging.getLogger(__name__)``; nothing here runs
at import time. The CLI picks one of the ``configure_*`` functions:
- JSON lines to a file for long unattended runs
- Readable console output for development and ``--debug``
- Errors only for normal interactive use
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "openai", "google_genai", "google.auth")

_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message',
])


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Add run context (tool name, document) to log records."""

    def __init__(self):
        super().__init__()
        self.context: Dict[str, Any] = {}

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def clear_context(self):
        self.context.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            setattr(record, key, value)
        return True


_context_filter = ContextFilter()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_context(**kwargs):
    """Set logging context for the current run."""
    _context_filter.set_context(**kwargs)


def clear_context():
    _context_filter.clear_context()


def _quiet_libraries() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _reset_root(level: int) -> logging.Logger:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)
    return root


def configure_production_logging(log_file: str = "writerkit.log", level: str = "INFO"):
    """Structured JSON logging to ``log_file``."""
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(JSONFormatter())
    file_handler.addFilter(_context_filter)

    root = _reset_root(getattr(logging, level.upper()))
    root.addHandler(file_handler)
    _quiet_libraries()


def configure_development_logging(level: str = "DEBUG"):
    """Readable logging on stderr, so it never mixes with streamed output."""
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%H:%M:%S'
    ))
    console_handler.addFilter(_context_filter)

    root = _reset_root(getattr(logging, level.upper()))
    root.addHandler(console_handler)
    _quiet_libraries()


def configure_quiet_logging():
    """Only errors, on stderr."""
    error_handler = logging.StreamHandler(sys.stderr)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter('ERROR: %(message)s'))

    root = _reset_root(logging.ERROR)
    root.addHandler(error_handler)
    _quiet_libraries()


def setup_logging(debug: bool = False, log_file: str = None) -> None:
    """Configure logging for a CLI invocation."""
    if log_file:
        configure_production_logging(log_file, "DEBUG" if debug else "INFO")
    elif debug:
        configure_development_logging("DEBUG")
    else:
        configure_quiet_logging()


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(self, **context):
        self.context = context
        self.previous_context = {}

    def __enter__(self):
        self.previous_context = _context_filter.context.copy()
        set_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _context_filter.context = self.previous_context
