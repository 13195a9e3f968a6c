"""writerkit - manuscript analysis and writing tools driven by a language model."""

__version__ = "0.3.0"
