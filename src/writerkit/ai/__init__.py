"""Model transport orchestration: remote resources, token accounting and streaming."""
