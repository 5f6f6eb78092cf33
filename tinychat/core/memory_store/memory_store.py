"""
Memory Store Facade - single entry point for long-term context.

Owns persisted memories and summaries (with their embeddings) and answers
"which memories matter for this text" through the relevance ranker.

Key responsibilities:
- Memory batches that supersede a chat's previous batch
- Chat summaries
- Pending-work queries (chats to memorize, rows to embed)
- Embedding bookkeeping
- Relevant memory lookup
"""

from tinychat.core.relevance.ranker import Candidate, RelevanceRanker, SearchOptions
from tinychat.core.storage.base import ChatStorage, EmbeddingKind
from tinychat.models.memory import Memory, MemoryCandidate, PendingChat, PendingEmbeddings, Summary
from tinychat.models.message import ModelConfig
from tinychat.utils.exceptions import NotFoundError, ValidationError
from tinychat.utils.id_generator import generate_memory_id, generate_summary_id
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class MemoryStore:
    """
    Unified facade for memory and summary storage.

    Services should use this instead of calling storage directly for
    anything memory related.
    """

    def __init__(self, storage: ChatStorage, ranker: RelevanceRanker | None = None):
        """
        Initialize MemoryStore facade.

        Args:
            storage: Persistence backend
            ranker: Relevance ranker used by ``list_relevant``
        """
        self.storage = storage
        self.ranker = ranker or RelevanceRanker()

    async def create_memories(
        self,
        chat_id: str,
        config: ModelConfig,
        candidates: list[MemoryCandidate],
        user_id: str | None = None,
    ) -> list[Memory]:
        """
        Store a new memory batch for a chat.

        The chat's previous memories stay in storage but are marked
        ``latest=False``, all in one transaction.

        Args:
            chat_id: Chat the memories were extracted from
            config: Model configuration that produced them
            candidates: Extracted facts
            user_id: Owner check

        Returns:
            The stored memories

        Raises:
            NotFoundError: If the chat doesn't exist
        """
        async with self.storage.transaction():
            chat = await self.storage.get_chat(chat_id, user_id)
            if chat is None:
                raise NotFoundError(f"Chat not found: {chat_id}", {"chat_id": chat_id})

            memories = [
                Memory(
                    id=generate_memory_id(),
                    user_id=chat.user_id,
                    folder_id=chat.folder_id,
                    chat_id=chat.id,
                    config=config,
                    **candidate.model_dump(),
                )
                for candidate in candidates
            ]

            superseded = await self.storage.supersede_chat_memories(chat_id)
            await self.storage.add_memories(memories)

        logger.info(
            f"Stored {len(memories)} memories for chat {chat_id}",
            extra={"superseded": superseded, "user_id": chat.user_id},
        )
        return memories

    async def create_summary(
        self, chat_id: str, config: ModelConfig, content: str, user_id: str | None = None
    ) -> Summary:
        chat = await self.storage.get_chat(chat_id, user_id)
        if chat is None:
            raise NotFoundError(f"Chat not found: {chat_id}", {"chat_id": chat_id})

        summary = Summary(
            id=generate_summary_id(),
            user_id=chat.user_id,
            folder_id=chat.folder_id,
            chat_id=chat.id,
            config=config,
            content=content,
        )
        await self.storage.add_summary(summary)
        return summary

    async def list_memories(self, user_id: str, latest_only: bool = True) -> list[Memory]:
        return await self.storage.list_memories(user_id, latest_only=latest_only)

    async def list_summaries(self, chat_id: str) -> list[Summary]:
        return await self.storage.list_summaries(chat_id)

    async def list_pending_chats(self, user_id: str) -> list[PendingChat]:
        """Chats with messages newer than their latest memory batch."""
        return await self.storage.list_updated_chats(user_id)

    async def list_relevant(
        self,
        user_id: str,
        query_embedding: list[float],
        options: SearchOptions | None = None,
    ) -> list[Memory]:
        """
        Pick the user's latest memories most relevant to a query embedding.

        Memories without an embedding are not candidates.
        """
        memories = await self.storage.list_memories(user_id, latest_only=True, embedded_only=True)
        candidates = [Candidate(value=memory, embedding=memory.embedding) for memory in memories]
        ranked = self.ranker.rank(query_embedding, candidates, options)
        return [r.value for r in ranked]

    # ═══════════════════════════════════════════════════════════
    # EMBEDDINGS
    # ═══════════════════════════════════════════════════════════

    async def list_missing_embeddings(self, user_id: str) -> PendingEmbeddings:
        return await self.storage.list_missing_embeddings(user_id)

    async def save_embeddings(
        self, kind: EmbeddingKind, embeddings: dict[str, list[float]], user_id: str
    ) -> int:
        """
        Save computed embeddings keyed by row id.

        Raises:
            ValidationError: If kind is unknown or an id is empty
        """
        if any(not row_id for row_id in embeddings):
            raise ValidationError("Embedding ids must not be empty", {"kind": kind})
        updated = await self.storage.save_embeddings(kind, embeddings, user_id)
        logger.debug(f"Saved {updated} {kind} embeddings", extra={"user_id": user_id})
        return updated

    async def reset_embeddings(self, user_id: str) -> None:
        """Forget every embedding of a user, e.g. after switching embedding models."""
        await self.storage.reset_embeddings(user_id)
        logger.info(f"Reset all embeddings for user {user_id}")
