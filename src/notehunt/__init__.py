"""notehunt - keeps a file status table and a full-text index in sync with a directory."""

__version__ = "0.1.0"
