"""Taskboard: todo service with @mentions and an optimistic client sync engine."""

__version__ = "0.1.0"
