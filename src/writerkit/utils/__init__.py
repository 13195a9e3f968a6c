"""Utility modules for writerkit."""
