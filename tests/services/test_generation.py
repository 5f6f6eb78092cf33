"""
Tests for reply generation.
"""

import asyncio
from datetime import date, datetime, timedelta

import pytest
from conftest import USER_ID, candidate, first_text

from tinychat.config import EmbeddingsConfig, GenerationConfig
from tinychat.core.model_service.base import ModelService
from tinychat.core.model_service.debug import DebugModelService
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.models.message import (
    AbortPart,
    Author,
    FilePart,
    Message,
    ModelConfig,
    ModelDescriptor,
    OpaqueMetadata,
    TextPart,
    ThoughtPart,
)
from tinychat.models.stream import StreamEnd
from tinychat.services.generation import (
    GenerationOrchestrator,
    ReplyAccumulator,
    build_instructions,
    label_message,
)
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.exceptions import InvalidStateError, NotFoundError, UpstreamServiceError
from tinychat.utils.text import extract_text

SCRIPTED = ModelConfig(service="scripted", model="parrot")


class ScriptedService(ModelService):
    """Replays a fixed list of deltas, then optionally fails or hangs."""

    name = "scripted"

    def __init__(self, script=None, error: Exception | None = None, hang: bool = False):
        self.script = script or [TextPart(value="ok")]
        self.error = error
        self.hang = hang
        self.calls: list[tuple[str, list[Message], ModelConfig]] = []

    async def get_models(self):
        return [ModelDescriptor(name="parrot")]

    def get_args(self, model):
        return []

    async def generate(self, instructions, context, config, cancel=None):
        self.calls.append((instructions, context, config))
        for delta in self.script:
            yield delta
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def embed(self, texts, config):
        return [[1.0, 0.0] for _ in texts]


@pytest.fixture
def scripted() -> ScriptedService:
    return ScriptedService()


@pytest.fixture
def orchestrator(editor, memory_store, scripted) -> GenerationOrchestrator:
    registry = ModelServiceRegistry([scripted, DebugModelService()])
    return GenerationOrchestrator(
        editor, memory_store, registry, GenerationConfig(flush_interval_ms=0)
    )


@pytest.fixture
def send(editor):
    """Store a message with the scripted model config."""

    async def _send(text: str, chat_id: str | None = None, author=Author.USER, **flags):
        return await editor.create_message(
            USER_ID, author, SCRIPTED, [TextPart(value=text)], chat_id=chat_id, **flags
        )

    return _send


@pytest.mark.unit
class TestReplyAccumulator:
    """Test folding deltas into a reply."""

    def test_fold(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        for delta in [
            TextPart(value="He"),
            TextPart(value="llo"),
            ThoughtPart(value="hm"),
            TextPart(value="!"),
        ]:
            accumulator.apply(delta)

        assert accumulator.data == [
            TextPart(value="Hello"),
            ThoughtPart(value="hm"),
            TextPart(value="!"),
        ]

    def test_leading_whitespace_trimmed_once(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        for value in ["  ", "\n Hi", " there"]:
            accumulator.apply(TextPart(value=value))

        assert accumulator.data == [TextPart(value="Hi there")]

    def test_flags(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        accumulator.apply(ThoughtPart(value="hm"))
        assert accumulator.thinking and not accumulator.generating

        accumulator.apply(TextPart(value="Hi"))
        assert not accumulator.thinking and accumulator.generating

    def test_abort_stops(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        assert accumulator.apply(TextPart(value="Hi"))
        assert not accumulator.apply(AbortPart())
        assert accumulator.data == [TextPart(value="Hi"), AbortPart()]

    def test_abort_added_once(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        accumulator.apply(AbortPart())
        accumulator.abort()

        assert accumulator.data == [AbortPart()]

    def test_stream_end_records_metadata(self):
        accumulator = ReplyAccumulator("msg_1", "chat_1")

        accumulator.apply(StreamEnd(metadata=OpaqueMetadata(value={"tokens": 3})))

        assert accumulator.metadata == OpaqueMetadata(value={"tokens": 3})
        assert accumulator.data == []


@pytest.mark.unit
class TestContextShaping:
    """Test instructions and message labels."""

    def _message(self, author, *parts, created_at=None):
        return Message(
            id="msg_1",
            chat_id="chat_1",
            folder_id="fld_1",
            user_id=USER_ID,
            author=author,
            config=SCRIPTED,
            data=list(parts),
            created_at=created_at or datetime(2024, 1, 1, 12, 0),
        )

    def test_instructions(self):
        instructions = build_instructions("parrot", "Answer in French.", date(2024, 3, 5))

        assert instructions.startswith("Today's date is March 05, 2024.")
        assert 'You are the AI model "parrot".' in instructions
        assert instructions.endswith("Answer in French.")

    def test_instructions_without_user_text(self):
        assert "Additionally" not in build_instructions("parrot", "   ")

    def test_model_label(self):
        labeled = label_message(self._message(Author.MODEL, TextPart(value="Hi")), None)

        assert first_text(labeled) == "[assistant:model=parrot]\nHi"

    def test_user_label_with_delay(self):
        previous = self._message(Author.MODEL, TextPart(value="Hi"))
        message = self._message(
            Author.USER,
            TextPart(value="Back"),
            created_at=previous.created_at + timedelta(hours=2),
        )

        labeled = label_message(message, previous)

        assert first_text(labeled) == (
            "[user]\n[Conversation timing: 2 hours have passed since the last message.]\nBack"
        )

    def test_files_and_quotes(self):
        message = self._message(
            Author.USER,
            TextPart(value="::>:: quoted"),
            FilePart(name="a.txt", mime="text/plain", url="https://x/a.txt"),
            TextPart(value="see"),
        )

        labeled = label_message(message, None)

        assert [getattr(part, "value", None) for part in labeled.data] == [
            "[user]\n> quoted",
            "Attached file #1 (a.txt):",
            None,
            "see",
        ]


@pytest.mark.unit
@pytest.mark.asyncio
class TestGenerationOrchestrator:
    """Test running reply turns."""

    async def test_reply_is_folded_and_persisted(self, orchestrator, scripted, editor, send):
        scripted.script = [
            TextPart(value="He"),
            TextPart(value="llo"),
            ThoughtPart(value="hm"),
            TextPart(value="!"),
        ]
        prompt = await send("Hi")

        replies = await orchestrator.run(prompt.id, USER_ID)

        stored = await editor.list_messages(prompt.chat_id)
        assert [m.id for m in stored] == [prompt.id, replies[0].id]
        assert stored[1].author == Author.MODEL
        assert stored[1].previous_id == prompt.id
        assert stored[1].data == [
            TextPart(value="Hello"),
            ThoughtPart(value="hm"),
            TextPart(value="!"),
        ]

    async def test_snapshots(self, orchestrator, scripted, send):
        scripted.script = [TextPart(value="a"), TextPart(value="b"), TextPart(value="c")]
        snapshots = []
        prompt = await send("Hi")

        await orchestrator.run(prompt.id, USER_ID, on_update=snapshots.append)

        texts = [extract_text(s.data) for s in snapshots]
        assert all(later.startswith(earlier) for earlier, later in zip(texts, texts[1:]))
        assert snapshots[-1].done
        assert not snapshots[-1].cancelled
        assert texts[-1] == "abc"

    async def test_context_and_instructions(self, orchestrator, scripted, send):
        prompt = await send("Hi")

        await orchestrator.run(prompt.id, USER_ID)

        instructions, context, config = scripted.calls[0]
        assert 'You are the AI model "parrot".' in instructions
        assert [first_text(m) for m in context] == ["[user]\nHi"]
        assert config == SCRIPTED

    async def test_reuses_model_reply(self, orchestrator, scripted, editor, send):
        """Test that regenerating keeps the existing reply's ID and position."""
        prompt = await send("Hi")
        old = await send("old answer", prompt.chat_id, Author.MODEL)
        scripted.script = [TextPart(value="new answer")]

        replies = await orchestrator.run(prompt.id, USER_ID)

        stored = await editor.list_messages(prompt.chat_id)
        assert replies[0].id == old.id
        assert [first_text(m) for m in stored] == ["Hi", "new answer"]

    async def test_regenerates_following_turns(self, orchestrator, scripted, editor, send):
        first = await send("one")
        first_reply = await send("r1", first.chat_id, Author.MODEL)
        await send("two", first.chat_id)
        second_reply = await send("r2", first.chat_id, Author.MODEL)

        replies = await orchestrator.run(first.id, USER_ID)

        assert [r.id for r in replies] == [first_reply.id, second_reply.id]
        assert len(scripted.calls) == 2
        assert len(scripted.calls[1][1]) == 3
        assert len(await editor.list_messages(first.chat_id)) == 4

    async def test_inserts_reply_before_next_turn(self, orchestrator, editor, send):
        """Test that a user turn without reply gets one in front of the next turn."""
        first = await send("one")
        second = await send("two", first.chat_id)

        replies = await orchestrator.run(first.id, USER_ID)

        stored = await editor.list_messages(first.chat_id)
        assert [m.author for m in stored] == [Author.USER, Author.MODEL, Author.USER, Author.MODEL]
        assert stored[2].id == second.id
        assert len(replies) == 2

    async def test_model_message_rejected(self, orchestrator, send):
        prompt = await send("Hi")
        reply = await send("Yo", prompt.chat_id, Author.MODEL)

        with pytest.raises(InvalidStateError):
            await orchestrator.run(reply.id, USER_ID)

    async def test_unknown_service_leaves_chain_alone(self, orchestrator, editor):
        prompt = await editor.create_message(
            USER_ID, Author.USER, ModelConfig(service="missing", model="x"), [TextPart(value="Hi")]
        )

        with pytest.raises(NotFoundError):
            await orchestrator.run(prompt.id, USER_ID)

        assert [m.id for m in await editor.list_messages(prompt.chat_id)] == [prompt.id]

    async def test_failure_rolls_back(self, orchestrator, scripted, editor, send):
        first = await send("one")
        await send("r1", first.chat_id, Author.MODEL)
        prompt = await send("two", first.chat_id)
        scripted.script = [TextPart(value="partial")]
        scripted.error = ConnectionError("quota exceeded")

        with pytest.raises(UpstreamServiceError) as exc:
            await orchestrator.run(prompt.id, USER_ID)

        assert exc.value.original_data == [TextPart(value="two")]
        assert [first_text(m) for m in await editor.list_messages(first.chat_id)] == ["one", "r1"]

    async def test_failure_on_first_message_removes_chat(self, orchestrator, scripted, editor, send):
        prompt = await send("Hi")
        scripted.error = ConnectionError("unauthorized")

        with pytest.raises(UpstreamServiceError):
            await orchestrator.run(prompt.id, USER_ID)

        with pytest.raises(NotFoundError):
            await editor.get_chat(prompt.chat_id)

    async def test_failure_message_with_braces(self, orchestrator, scripted, editor, send):
        first = await send("one")
        await send("r1", first.chat_id, Author.MODEL)
        prompt = await send("two", first.chat_id)
        scripted.error = RuntimeError("Error code: 429 - {'error': {'message': 'quota'}}")

        with pytest.raises(UpstreamServiceError) as exc:
            await orchestrator.run(prompt.id, USER_ID)

        assert "{'error'" in exc.value.message
        assert exc.value.original_data == [TextPart(value="two")]
        assert [first_text(m) for m in await editor.list_messages(first.chat_id)] == ["one", "r1"]

    async def test_provider_abort_keeps_partial(self, orchestrator, scripted, send):
        scripted.script = [TextPart(value="Hi"), AbortPart(), TextPart(value="ignored")]
        prompt = await send("Hi")

        replies = await orchestrator.run(prompt.id, USER_ID)

        assert replies[0].data == [TextPart(value="Hi"), AbortPart()]

    async def test_cancel_persists_partial(self, orchestrator, scripted, editor, send):
        scripted.script = [TextPart(value="Hi")]
        scripted.hang = True
        cancel = CancellationToken()
        snapshots = []

        def on_update(snapshot):
            snapshots.append(snapshot)
            if snapshot.data:
                cancel.cancel()

        prompt = await send("Hello")

        replies = await asyncio.wait_for(
            orchestrator.run(prompt.id, USER_ID, cancel=cancel, on_update=on_update), timeout=5
        )

        assert replies[0].data == [TextPart(value="Hi"), AbortPart()]
        stored = await editor.get_message(replies[0].id)
        assert stored.data == [TextPart(value="Hi"), AbortPart()]
        assert snapshots[-1].done and snapshots[-1].cancelled

    async def test_cancel_stops_later_turns(self, orchestrator, scripted, send):
        first = await send("one")
        await send("two", first.chat_id)
        cancel = CancellationToken()
        cancel.cancel()

        replies = await orchestrator.run(first.id, USER_ID, cancel=cancel)

        assert replies == []
        assert scripted.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestMemoryContext:
    """Test long-term memories in reply context."""

    @pytest.fixture
    def remembering(self, editor, memory_store, scripted, debug_service):
        registry = ModelServiceRegistry([scripted, debug_service])
        return GenerationOrchestrator(
            editor,
            memory_store,
            registry,
            GenerationConfig(flush_interval_ms=0),
            embeddings=EmbeddingsConfig(service="debug", model="embed"),
        )

    @pytest.fixture
    async def remembered(self, memory_store, debug_service, send):
        """A stored and embedded memory from an earlier chat."""
        earlier = await send("I like green tea")
        memories = await memory_store.create_memories(
            earlier.chat_id, SCRIPTED, [candidate("Likes green tea")]
        )
        [vector] = await debug_service.embed(
            [memories[0].as_context()], ModelConfig(service="debug", model="embed")
        )
        await memory_store.save_embeddings("memories", {memories[0].id: vector}, USER_ID)
        return memories[0]

    async def test_memories_lead_context(self, remembering, remembered, scripted, send):
        prompt = await send("What tea should I buy?")

        await remembering.run(prompt.id, USER_ID)

        context = scripted.calls[0][1]
        assert first_text(context[0]) == (
            "Relevant long-term user context:\n"
            "* PREFERENCE: Likes green tea\n\n"
            "Use this only when relevant to the request."
        )
        assert first_text(context[1]) == "[user]\nWhat tea should I buy?"

    async def test_incognito_chat_gets_no_memories(self, remembering, remembered, scripted, send):
        prompt = await send("What tea should I buy?", incognito=True)

        await remembering.run(prompt.id, USER_ID)

        assert len(scripted.calls[0][1]) == 1

    async def test_embedding_failure_does_not_block_reply(
        self, remembering, remembered, scripted, debug_service, send
    ):
        async def broken(texts, config):
            raise ConnectionError("embedding server down")

        debug_service.embed = broken
        prompt = await send("What tea should I buy?")

        replies = await remembering.run(prompt.id, USER_ID)

        assert len(replies) == 1
        assert len(scripted.calls[0][1]) == 1

    async def test_embedding_error_with_braces_does_not_block_reply(
        self, remembering, remembered, scripted, debug_service, send
    ):
        async def broken(texts, config):
            raise RuntimeError("Error code: 400 - {'error': {'code': 'bad_input'}}")

        debug_service.embed = broken
        prompt = await send("What tea should I buy?")

        replies = await remembering.run(prompt.id, USER_ID)

        assert first_text(replies[0]) == "ok"
