"""Identity and vault stores.

Both backends expose ``transaction()``, an async context manager yielding
a session whose operations commit together or not at all.
"""
from .memory import MemoryStore, MemorySession
from .postgres import PostgresStore, PostgresSession
from .migrations import migrate

__all__ = [
    "MemoryStore",
    "MemorySession",
    "PostgresStore",
    "PostgresSession",
    "migrate",
]
