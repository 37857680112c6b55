"""Stores package for Bloker session persistence."""

from .session_store import SessionStore, MemorySessionStore, ConcurrencyError

__all__ = [
    "SessionStore",
    "MemorySessionStore",
    "ConcurrencyError",
]
