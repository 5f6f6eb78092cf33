"""
Base interface for chat storage.

Persistence capability consumed by the chain store/editor and the memory
store: CRUD on folders, chats, messages, memories, summaries and pairings,
plus the ability to run a set of mutations atomically.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Literal

from tinychat.models.chat import Chat, Folder
from tinychat.models.memory import Memory, PendingChat, PendingEmbeddings, Summary
from tinychat.models.message import Message, ResponseMetadata

EmbeddingKind = Literal["messages", "summaries", "memories"]


class ChatStorage(ABC):
    """Abstract base class for chat storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables/schema)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Run the enclosed operations atomically.

        Usage:
            async with storage.transaction():
                await storage.add_message(...)
                await storage.set_previous(...)

        Everything inside commits together or is rolled back when the block
        raises. Nested blocks join the outer transaction.
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # FOLDERS & CHATS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_folder(self, folder: Folder) -> None:
        pass

    @abstractmethod
    async def get_folder(self, folder_id: str, user_id: str | None = None) -> Folder | None:
        """
        Retrieve a folder (without its chats).

        Args:
            folder_id: Folder identifier
            user_id: When given, only a folder owned by this user matches

        Returns:
            Folder or None if not found
        """
        pass

    @abstractmethod
    async def update_folder_title(self, folder_id: str, title: str | None) -> None:
        pass

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder with all of its chats and messages."""
        pass

    @abstractmethod
    async def count_folder_chats(self, folder_id: str) -> int:
        pass

    @abstractmethod
    async def list_folders(self, user_id: str) -> list[Folder]:
        """
        List folders that hold at least one non-temporary chat.

        Each folder carries its non-temporary chats with ``last_activity``
        filled in. Ordering is left to the caller.
        """
        pass

    @abstractmethod
    async def add_chat(self, chat: Chat) -> None:
        pass

    @abstractmethod
    async def get_chat(self, chat_id: str, user_id: str | None = None) -> Chat | None:
        pass

    @abstractmethod
    async def update_chat_title(self, chat_id: str, title: str | None) -> None:
        pass

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        """Delete a chat with all of its messages."""
        pass

    @abstractmethod
    async def list_updated_chats(self, user_id: str) -> list[PendingChat]:
        """
        List memorizable chats whose latest message is newer than their
        latest memory.
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # MESSAGES
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_message(self, message: Message) -> None:
        pass

    @abstractmethod
    async def add_messages(self, messages: list[Message]) -> None:
        pass

    @abstractmethod
    async def get_message(
        self, message_id: str, user_id: str | None = None, include_metadata: bool = True
    ) -> Message | None:
        pass

    @abstractmethod
    async def list_chat_messages(
        self, chat_id: str, user_id: str | None = None, include_metadata: bool = False
    ) -> list[Message]:
        """
        Return every message of a chat in storage order (not chain order).
        """
        pass

    @abstractmethod
    async def count_chat_messages(self, chat_id: str) -> int:
        pass

    @abstractmethod
    async def find_successor(self, message_id: str) -> Message | None:
        """Return the message whose ``previous_id`` is ``message_id``."""
        pass

    @abstractmethod
    async def find_tails(self, chat_id: str) -> list[Message]:
        """Return the chat's messages that no other message points at."""
        pass

    @abstractmethod
    async def update_message(self, message: Message) -> None:
        """Overwrite author, config, data, metadata and created_at."""
        pass

    @abstractmethod
    async def set_previous(self, message_id: str, previous_id: str | None) -> None:
        pass

    @abstractmethod
    async def delete_messages(self, message_ids: list[str]) -> None:
        pass

    @abstractmethod
    async def list_metadata(
        self, message_ids: list[str], user_id: str | None = None
    ) -> dict[str, ResponseMetadata | None]:
        pass

    # ═══════════════════════════════════════════════════════════
    # MEMORIES, SUMMARIES & EMBEDDINGS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_memories(self, memories: list[Memory]) -> None:
        pass

    @abstractmethod
    async def supersede_chat_memories(self, chat_id: str) -> int:
        """Mark every memory of a chat as not latest. Returns rows touched."""
        pass

    @abstractmethod
    async def list_memories(
        self, user_id: str, latest_only: bool = True, embedded_only: bool = False
    ) -> list[Memory]:
        pass

    @abstractmethod
    async def add_summary(self, summary: Summary) -> None:
        pass

    @abstractmethod
    async def list_summaries(self, chat_id: str) -> list[Summary]:
        pass

    @abstractmethod
    async def list_missing_embeddings(self, user_id: str) -> PendingEmbeddings:
        pass

    @abstractmethod
    async def save_embeddings(
        self, kind: EmbeddingKind, embeddings: dict[str, list[float]], user_id: str
    ) -> int:
        """Store embeddings keyed by row id. Returns rows updated."""
        pass

    @abstractmethod
    async def reset_embeddings(self, user_id: str) -> None:
        """Null out every embedding of a user."""
        pass

    # ═══════════════════════════════════════════════════════════
    # PAIRINGS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_pairing(self, pairing_id: str, expires_at: datetime) -> None:
        pass

    @abstractmethod
    async def get_pairing(self, pairing_id: str) -> tuple[str | None, datetime] | None:
        """Return ``(user_id, expires_at)`` or None if unknown."""
        pass

    @abstractmethod
    async def set_pairing_user(self, pairing_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    async def delete_pairing(self, pairing_id: str) -> None:
        pass

    @abstractmethod
    async def delete_expired_pairings(self, now: datetime) -> int:
        pass
