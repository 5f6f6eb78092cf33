"""
Tests for the conversation service.
"""

import asyncio

import pytest
from conftest import USER_ID, first_text

from tinychat.config import GenerationConfig
from tinychat.core.model_service.base import ModelService
from tinychat.models.message import AbortPart, Author, ModelConfig, ModelDescriptor, TextPart
from tinychat.services.conversation import TITLE_LENGTH, ConversationService
from tinychat.services.generation import GenerationOrchestrator

GATED = ModelConfig(service="gated", model="gate")


class GatedService(ModelService):
    """The first request streams a little and then never finishes."""

    name = "gated"

    def __init__(self):
        self.started = asyncio.Event()
        self.cancel = None
        self.calls = 0

    async def get_models(self):
        return [ModelDescriptor(name="gate")]

    def get_args(self, model):
        return []

    async def generate(self, instructions, context, config, cancel=None):
        self.calls += 1
        if self.calls == 1:
            self.cancel = cancel
            yield TextPart(value="stale")
            self.started.set()
            await asyncio.Event().wait()
        yield TextPart(value="fresh")

    async def embed(self, texts, config):
        return [[1.0] for _ in texts]


@pytest.fixture
def conversation(editor, memory_store, registry) -> ConversationService:
    orchestrator = GenerationOrchestrator(
        editor, memory_store, registry, GenerationConfig(flush_interval_ms=0)
    )
    return ConversationService(editor, orchestrator)


@pytest.mark.unit
@pytest.mark.asyncio
class TestConversationService:
    """Test sending messages and running replies."""

    async def test_send(self, conversation, editor, model_config):
        message, replies = await conversation.send(
            USER_ID, model_config, [TextPart(value="Hello **world**")]
        )

        chain = await editor.list_messages(message.chat_id)
        assert [m.author for m in chain] == [Author.USER, Author.MODEL]
        assert first_text(replies[0]) == "[user]\nHello **world**"
        assert (await editor.get_chat(message.chat_id)).title == "Hello world"
        assert not conversation.is_running(message.chat_id)

    async def test_long_title_truncated(self, conversation, editor, model_config):
        message = await conversation.submit(USER_ID, model_config, [TextPart(value="x" * 300)])

        title = (await editor.get_chat(message.chat_id)).title
        assert title == "x" * TITLE_LENGTH + "..."

    async def test_title_kept(self, conversation, editor, model_config):
        first = await conversation.submit(USER_ID, model_config, [TextPart(value="Tea")])

        await conversation.submit(
            USER_ID, model_config, [TextPart(value="Coffee")], chat_id=first.chat_id
        )

        assert (await editor.get_chat(first.chat_id)).title == "Tea"

    async def test_edit_with_truncate(self, conversation, editor, model_config):
        message, _ = await conversation.send(USER_ID, model_config, [TextPart(value="one")])
        await conversation.send(
            USER_ID, model_config, [TextPart(value="two")], chat_id=message.chat_id
        )

        edited = await conversation.submit(
            USER_ID, model_config, [TextPart(value="uno")], edit_id=message.id, truncate=True
        )

        chain = await editor.list_messages(message.chat_id)
        assert [m.id for m in chain] == [edited.id]
        assert first_text(chain[0]) == "uno"

    async def test_cancel(self, conversation, editor, model_config):
        message = await conversation.submit(USER_ID, model_config, [TextPart(value="Hello")])

        def on_update(snapshot):
            if snapshot.generating:
                assert conversation.is_running(message.chat_id)
                assert conversation.cancel(message.chat_id)

        replies = await conversation.reply(message.id, USER_ID, on_update)

        assert replies[0].data[-1] == AbortPart()
        assert not conversation.is_running(message.chat_id)

    async def test_cancel_idle_chat(self, conversation):
        assert conversation.cancel("chat_idle") is False

    async def test_superseded_reply_finishes_first(self, conversation, editor, registry):
        gated = GatedService()
        registry.register(gated)
        message = await conversation.submit(USER_ID, GATED, [TextPart(value="Hello")])

        first = asyncio.create_task(conversation.reply(message.id, USER_ID))
        await asyncio.wait_for(gated.started.wait(), timeout=5)
        first_done = []

        def on_update(snapshot):
            first_done.append(first.done())

        second = await asyncio.wait_for(
            conversation.reply(message.id, USER_ID, on_update), timeout=5
        )
        stale = await first

        assert first_done and all(first_done)
        assert stale[0].data == [TextPart(value="stale"), AbortPart()]
        chain = await editor.list_messages(message.chat_id)
        assert [m.id for m in chain] == [message.id, second[0].id]
        assert second[0].id == stale[0].id
        assert chain[1].data == [TextPart(value="fresh")]
        assert not conversation.is_running(message.chat_id)

    async def test_waiting_reply_superseded_again(self, conversation, registry):
        gated = GatedService()
        registry.register(gated)
        message = await conversation.submit(USER_ID, GATED, [TextPart(value="Hello")])
        release = asyncio.Event()

        async def hold(snapshot):
            if snapshot.done:
                await release.wait()

        first = asyncio.create_task(conversation.reply(message.id, USER_ID, hold))
        await asyncio.wait_for(gated.started.wait(), timeout=5)
        skipped = asyncio.create_task(conversation.reply(message.id, USER_ID))
        await asyncio.wait_for(gated.cancel.wait(), timeout=5)
        waiting = conversation._active[message.chat_id]
        last = asyncio.create_task(conversation.reply(message.id, USER_ID))
        await asyncio.wait_for(waiting.wait(), timeout=5)
        release.set()

        assert await asyncio.wait_for(skipped, timeout=5) == []
        assert (await first)[0].data[-1] == AbortPart()
        assert (await last)[0].data == [TextPart(value="fresh")]
        assert gated.calls == 2
