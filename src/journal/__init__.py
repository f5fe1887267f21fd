"""Append-only JSON-lines run journal."""

from journal.writer import JournalWriter

__all__ = ["JournalWriter"]
