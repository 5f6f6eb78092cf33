"""
Embedding Sync Job - fills in missing embeddings for a user.

Handles:
- Messages of non-temporary chats (scrubbed text, empty text skipped)
- Chat summaries
- Memories, embedded as "CATEGORY: fact"
- Batching with a pause between batches
"""

import asyncio
from collections.abc import Sequence

from tinychat.config import EmbeddingsConfig
from tinychat.core.memory_store.memory_store import MemoryStore
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.core.storage.base import EmbeddingKind
from tinychat.models.message import ModelConfig
from tinychat.utils.exceptions import ConfigurationError, EmbeddingError
from tinychat.utils.logger import get_logger
from tinychat.utils.text import extract_text, scrub_text

logger = get_logger(__name__)


class EmbeddingSyncJob:
    """
    Embeds whatever a user has that still lacks an embedding.

    Usage:
        job = EmbeddingSyncJob(memory_store, registry, config.embeddings)
        counts = await job.run(user_id)   # {"messages": 12, "summaries": 1, "memories": 4}
    """

    def __init__(
        self,
        memory_store: MemoryStore,
        registry: ModelServiceRegistry,
        config: EmbeddingsConfig | None = None,
    ):
        """
        Initialize embedding job.

        Args:
            memory_store: Source of pending rows and sink for embeddings
            registry: Model services by name
            config: Embedding service, model and batching
        """
        self.memory_store = memory_store
        self.registry = registry
        self.config = config or EmbeddingsConfig()

    @property
    def enabled(self) -> bool:
        return bool(self.config.service)

    async def run(self, user_id: str) -> dict[str, int]:
        """
        Embed every pending message, summary and memory of a user.

        Returns:
            Number of embeddings saved per kind

        Raises:
            ConfigurationError: If no embedding service is configured
            EmbeddingError: If the embedding service fails; batches saved
                before the failure are kept
        """
        if not self.enabled:
            raise ConfigurationError("No embedding service configured")

        service = self.registry.get(self.config.service)
        model = ModelConfig(service=self.config.service, model=self.config.model)
        pending = await self.memory_store.list_missing_embeddings(user_id)

        messages = {
            message.id: text
            for message in pending.messages
            if (text := scrub_text(extract_text(message.data)))
        }
        work: list[tuple[EmbeddingKind, dict[str, str]]] = [
            ("messages", messages),
            ("summaries", {summary.id: summary.content for summary in pending.summaries}),
            ("memories", {memory.id: memory.as_context() for memory in pending.memories}),
        ]

        counts: dict[str, int] = {}
        for kind, texts in work:
            counts[kind] = 0
            if not texts:
                continue

            logger.info(
                f"Generating embeddings for {len(texts)} {kind}",
                extra={"user_id": user_id, "model": model.model},
            )
            ids = list(texts)
            for start in range(0, len(ids), self.config.batch_size):
                batch = ids[start : start + self.config.batch_size]
                vectors = await service.embed([texts[i] for i in batch], model)
                counts[kind] += await self._save(kind, batch, vectors, user_id)
                await asyncio.sleep(self.config.batch_delay)

        logger.info("All embeddings saved", extra={"user_id": user_id, **counts})
        return counts

    async def reset(self, user_id: str) -> None:
        """Forget every embedding of a user so the next run recomputes them."""
        await self.memory_store.reset_embeddings(user_id)

    async def _save(
        self, kind: EmbeddingKind, ids: Sequence[str], vectors: list[list[float]], user_id: str
    ) -> int:
        if len(vectors) != len(ids):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(ids)} texts",
                {"kind": kind},
            )
        return await self.memory_store.save_embeddings(kind, dict(zip(ids, vectors)), user_id)
