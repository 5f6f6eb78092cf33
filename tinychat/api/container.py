"""
Application container - builds and owns every long-lived component.
"""

import asyncio
import contextlib

from tinychat.config import Config
from tinychat.core.chain.chain_editor import ChainEditor
from tinychat.core.factory.model_service_factory import ModelServiceFactory
from tinychat.core.memory_store.memory_store import MemoryStore
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.core.relevance.ranker import RelevanceRanker, SearchOptions
from tinychat.core.storage.base import ChatStorage
from tinychat.core.storage.sqlite_store import SQLiteChatStorage
from tinychat.services.conversation import ConversationService
from tinychat.services.embedding_sync import EmbeddingSyncJob
from tinychat.services.generation import GenerationOrchestrator
from tinychat.services.memory_extraction import MemoryExtractor
from tinychat.services.pairing import PairingService
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class Container:
    """
    Wires storage, model services and workflows from one configuration.

    Usage:
        container = Container(config)
        await container.start()
        ...
        await container.close()
    """

    def __init__(
        self,
        config: Config,
        storage: ChatStorage | None = None,
        registry: ModelServiceRegistry | None = None,
    ):
        """
        Initialize container.

        Args:
            config: Application configuration
            storage: Storage backend (default: SQLite at ``config.storage.db_path``)
            registry: Model services (default: built from ``config.services``)
        """
        self.config = config
        self.storage = storage or SQLiteChatStorage(config.storage.db_path)
        self.registry = registry or ModelServiceFactory.create_registry(config.services)

        ranker = RelevanceRanker(SearchOptions(**config.relevance.model_dump()))
        self.editor = ChainEditor(self.storage)
        self.memory_store = MemoryStore(self.storage, ranker)
        self.orchestrator = GenerationOrchestrator(
            self.editor,
            self.memory_store,
            self.registry,
            config=config.generation,
            embeddings=config.embeddings,
            relevance=config.relevance,
        )
        self.conversation = ConversationService(self.editor, self.orchestrator)
        self.embedding_job = EmbeddingSyncJob(self.memory_store, self.registry, config.embeddings)
        self.extractor = MemoryExtractor(
            self.editor, self.memory_store, self.registry, config.memory, self.embedding_job
        )
        self.pairing = PairingService(self.storage, config.pairing)

        self._maintenance: asyncio.Task | None = None

    async def start(self, background: bool = True) -> None:
        """Open storage and, if requested, start periodic maintenance."""
        await self.storage.initialize()
        logger.info(
            f"Container started with services: {', '.join(self.registry.names())}",
            extra={"db_path": self.config.storage.db_path},
        )
        if background:
            self._maintenance = asyncio.create_task(self._maintain())

    async def close(self) -> None:
        if self._maintenance is not None:
            self._maintenance.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance
        await self.registry.close()
        await self.storage.close()
        logger.info("Container closed")

    async def _maintain(self) -> None:
        """
        Hourly housekeeping for the default user.

        Purges expired pairings and, when enabled, memorizes stale chats.
        """
        interval = max(self.config.memory.stale_after_hours, 0.01) * 3600
        user_id = self.config.default_user_id
        while True:
            try:
                await self.pairing.purge_expired()
                if self.config.memory.enabled:
                    await self.extractor.run(user_id)
            except Exception:
                logger.exception("Maintenance failed, retrying after {:.0f}s", interval)
            await asyncio.sleep(interval)
