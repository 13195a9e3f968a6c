"""Exception hierarchy for writerkit.

Configuration problems and missing required inputs are raised immediately.
Degraded remote capabilities are never raised; they travel back to the caller
as typed outcomes (see ``writerkit.ai.models.common``).
"""


class WriterKitError(Exception):
    """Base class for all writerkit errors."""


class ConfigurationError(WriterKitError, ValueError):
    """Raised when the run cannot start until the user fixes configuration."""


class RequiredInputMissing(WriterKitError, FileNotFoundError):
    """A required input file is missing or empty."""

    def __init__(self, path: str, reason: str = "File not found"):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class UnknownToolError(WriterKitError, KeyError):
    """Raised when a tool name is not in the catalogue."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Unknown tool"


class TransportError(WriterKitError):
    """A model transport call failed while a response was being streamed."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class StreamCancelled(WriterKitError):
    """The caller cancelled an in-flight generation."""
