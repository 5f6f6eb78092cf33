"""
Chat storage implementations for TinyChat.

Provides the abstract persistence capability and its SQLite backend.
"""

from tinychat.core.storage.base import ChatStorage
from tinychat.core.storage.sqlite_store import SQLiteChatStorage

__all__ = [
    "ChatStorage",
    "SQLiteChatStorage",
]
