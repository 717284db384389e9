"""Per-client rolling-window request quota for HTTP APIs, backed by Redis."""

__version__ = "0.1.0"
