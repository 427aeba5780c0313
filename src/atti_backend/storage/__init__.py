"""Relational persistence."""

from atti_backend.storage.sqlite import SqliteStore

__all__ = ["SqliteStore"]
