"""Core memory store components for TinyChat."""

from tinychat.core.memory_store.memory_store import MemoryStore

__all__ = [
    "MemoryStore",
]
