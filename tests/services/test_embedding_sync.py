"""
Tests for the embedding sync job.
"""

from unittest.mock import AsyncMock, patch

import pytest
from conftest import USER_ID, candidate

from tinychat.config import EmbeddingsConfig
from tinychat.models.message import Author, FilePart
from tinychat.services.embedding_sync import EmbeddingSyncJob
from tinychat.utils.exceptions import ConfigurationError, EmbeddingError


@pytest.fixture
def job(memory_store, registry) -> EmbeddingSyncJob:
    return EmbeddingSyncJob(
        memory_store,
        registry,
        EmbeddingsConfig(service="debug", model="embed", batch_delay=0.0),
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestEmbeddingSyncJob:
    """Test filling in missing embeddings."""

    async def test_disabled(self, memory_store, registry):
        job = EmbeddingSyncJob(memory_store, registry)

        assert not job.enabled
        with pytest.raises(ConfigurationError):
            await job.run(USER_ID)

    async def test_run(self, job, memory_store, build_chain, model_config):
        chain = await build_chain("I like tea", "Noted")
        await memory_store.create_summary(chain[0].chat_id, model_config, "Tea talk")
        await memory_store.create_memories(
            chain[0].chat_id, model_config, [candidate("Likes tea"), candidate("Owns a cat")]
        )

        counts = await job.run(USER_ID)

        assert counts == {"messages": 2, "summaries": 1, "memories": 2}
        assert (await memory_store.list_missing_embeddings(USER_ID)).empty
        assert await job.run(USER_ID) == {"messages": 0, "summaries": 0, "memories": 0}

    async def test_batches(self, memory_store, registry, debug_service, build_chain):
        await build_chain("one", "two", "three")
        job = EmbeddingSyncJob(
            memory_store,
            registry,
            EmbeddingsConfig(service="debug", model="embed", batch_size=2, batch_delay=0.0),
        )

        with patch.object(
            debug_service, "embed", new=AsyncMock(side_effect=debug_service.embed)
        ) as embed:
            counts = await job.run(USER_ID)

        assert counts["messages"] == 3
        assert [len(call.args[0]) for call in embed.call_args_list] == [2, 1]

    async def test_messages_without_text_skipped(self, job, editor, memory_store, model_config):
        message = await editor.create_message(
            USER_ID,
            Author.USER,
            model_config,
            [FilePart(name="a.png", mime="image/png", url="https://x/a.png")],
        )

        counts = await job.run(USER_ID)

        assert counts["messages"] == 0
        pending = await memory_store.list_missing_embeddings(USER_ID)
        assert [m.id for m in pending.messages] == [message.id]

    async def test_temporary_chats_skipped(self, job, build_chain):
        await build_chain("secret", temporary=True)

        assert (await job.run(USER_ID))["messages"] == 0

    async def test_vector_count_mismatch(self, job, debug_service, build_chain):
        await build_chain("one", "two")

        with patch.object(debug_service, "embed", new=AsyncMock(return_value=[[1.0]])):
            with pytest.raises(EmbeddingError):
                await job.run(USER_ID)

    async def test_reset(self, job, memory_store, build_chain):
        await build_chain("one")
        await job.run(USER_ID)

        await job.reset(USER_ID)

        assert (await job.run(USER_ID))["messages"] == 1
