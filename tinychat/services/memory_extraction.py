"""
Memory extraction job.

Chats that went quiet get read by the memory model, which answers with a
summary and a list of long-term memory candidates. The summary and the
memory batch are stored, the chat's previous batch is superseded, and the
new rows are embedded.
"""

import asyncio
import json
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError

from tinychat.config import MemoryConfig
from tinychat.core.chain.chain_store import ChainStore
from tinychat.core.memory_store.memory_store import MemoryStore
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.models.memory import ExtractionResult
from tinychat.models.message import Author, DataPart, Message, ModelConfig, TextPart
from tinychat.services.embedding_sync import EmbeddingSyncJob
from tinychat.utils.exceptions import TinyChatError, UpstreamServiceError, ValidationError
from tinychat.utils.id_generator import generate_message_id
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)

EXTRACTION_INSTRUCTIONS = """You analyze conversations to produce long-term memory candidates.

A memory must be:
- Stable over time
- Useful in future conversations
- About user identity, preferences, projects, skills, or constraints

Do NOT extract:
- Temporary requests
- One-time tasks
- Assistant statements
- Jokes

Facts must be:
- Atomic and self-contained
- Explicitly stated or strongly implied by the USER

Do NOT extract:
- Speculation
- Random or unimportant facts

Output valid JSON only."""

EXTRACTION_TASK = """Task:
1. Write a concise summary (max 5 sentences).
2. Extract long-term memory candidates.
3. Assign confidence scores (0-1).
4. Return JSON in the specified schema."""


class MemoryExtractor:
    """
    Turns stale chats into summaries and memories.

    Usage:
        extractor = MemoryExtractor(chain, memory_store, registry, config.memory, embedding_job)
        memorized = await extractor.run(user_id)
    """

    def __init__(
        self,
        chain: ChainStore,
        memory_store: MemoryStore,
        registry: ModelServiceRegistry,
        config: MemoryConfig | None = None,
        embedding_job: EmbeddingSyncJob | None = None,
    ):
        """
        Initialize memory extractor.

        Args:
            chain: Read access to chat chains
            memory_store: Sink for summaries and memories
            registry: Model services by name
            config: Memory model and staleness settings
            embedding_job: Run after extraction when embeddings are enabled
        """
        self.chain = chain
        self.memory_store = memory_store
        self.registry = registry
        self.config = config or MemoryConfig()
        self.embedding_job = embedding_job

    async def run(self, user_id: str, now: datetime | None = None) -> list[str]:
        """
        Memorize every stale chat of a user, then refresh embeddings.

        A chat is stale once its newest message is older than
        ``stale_after_hours``. A chat that fails to memorize is logged and
        skipped; it stays pending for the next run.

        Returns:
            IDs of the memorized chats
        """
        now = now or datetime.now()
        pending = await self.memory_store.list_pending_chats(user_id)
        logger.info(f"Found {len(pending)} pending chats to memorize", extra={"user_id": user_id})

        memorized: list[str] = []
        for chat in pending:
            hours = (now - chat.last_message_at).total_seconds() / 3600
            if hours <= self.config.stale_after_hours:
                continue

            logger.info(f"Chat {chat.id} is stale ({hours:.1f}h), memorizing")
            try:
                await self.memorize(chat.id)
            except TinyChatError as e:
                logger.warning(
                    "Could not memorize chat {}: {}",
                    chat.id,
                    e,
                    extra={"chat_id": chat.id, "context": e.context},
                )
                continue
            memorized.append(chat.id)
            await asyncio.sleep(self.config.chat_delay)

        if self.embedding_job is not None and self.embedding_job.enabled:
            await self.embedding_job.run(user_id)

        return memorized

    async def memorize(self, chat_id: str) -> ExtractionResult:
        """
        Extract a summary and memories from one chat.

        Raises:
            NotFoundError: Unknown chat or memory service
            UpstreamServiceError: The memory model failed to answer
            ValidationError: The model's answer is not valid extraction JSON
        """
        service = self.registry.get(self.config.service)
        config = service.prepare_config(
            ModelConfig(service=self.config.service, model=self.config.model)
        )

        schema = ExtractionResult.model_json_schema()
        task: list[DataPart] = [TextPart(value=EXTRACTION_TASK)]
        if "schema" in service.get_features(config.model):
            config.args["schema"] = schema
        else:
            task.append(TextPart(value=f"\n\nSchema: {json.dumps(schema)}"))

        history = await self.chain.list_messages(chat_id)
        if not history:
            raise ValidationError(f"Chat {chat_id} has no messages", {"chat_id": chat_id})
        last = history[-1]
        history.append(
            Message(
                id=generate_message_id(),
                chat_id=chat_id,
                folder_id=last.folder_id,
                user_id=last.user_id,
                author=Author.USER,
                config=config,
                data=task,
            )
        )

        logger.debug(f"Finding memories from {len(history)} messages", extra={"chat_id": chat_id})
        response = ""
        try:
            async for delta in service.generate(EXTRACTION_INSTRUCTIONS, history, config):
                if isinstance(delta, TextPart):
                    response += delta.value
        except TinyChatError:
            raise
        except Exception as e:
            raise UpstreamServiceError(
                f"Memory model failed: {e}", {"chat_id": chat_id, "model": config.model}
            ) from e

        try:
            result = ExtractionResult.model_validate_json(response)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Memory model returned invalid JSON: {e.error_count()} error(s)",
                {"chat_id": chat_id, "response": response[:200]},
            ) from e

        config.args.pop("schema", None)
        await self.memory_store.create_summary(chat_id, config, result.summary)
        await self.memory_store.create_memories(chat_id, config, result.memories)

        logger.info(
            f"{len(result.memories)} memories saved",
            extra={"chat_id": chat_id, "model": config.model},
        )
        return result
