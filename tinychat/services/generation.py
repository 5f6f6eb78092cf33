"""
Reply generation.

For a user message, (re)generates the reply to it and to every later user
turn of the chat: prepares a reply slot, assembles context (optionally with
relevant long-term memories), streams the model's deltas into the reply and
persists it. A failing model service rolls the originating turn back.
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date
from typing import Any

from tinychat.config import EmbeddingsConfig, GenerationConfig, RelevanceConfig
from tinychat.core.chain.chain_editor import ChainEditor
from tinychat.core.memory_store.memory_store import MemoryStore
from tinychat.core.model_service.base import ModelService
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.core.relevance.ranker import SearchOptions
from tinychat.models.chat import Chat
from tinychat.models.message import (
    AbortPart,
    Author,
    DataPart,
    FilePart,
    Message,
    ModelConfig,
    ResponseMetadata,
    TextPart,
    ThoughtPart,
)
from tinychat.models.stream import Delta, ReplySnapshot, StreamEnd
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.exceptions import InvalidStateError, TinyChatError, UpstreamServiceError
from tinychat.utils.id_generator import generate_message_id
from tinychat.utils.logger import get_logger
from tinychat.utils.text import describe_delay, extract_text, scrub_text

logger = get_logger(__name__)

SnapshotCallback = Callable[[ReplySnapshot], Awaitable[None] | None]

_END = object()


class _ProducerFailure:
    def __init__(self, error: Exception):
        self.error = error


def build_instructions(model: str, user_instructions: str = "", today: date | None = None) -> str:
    """System instructions for one reply."""
    today = today or date.today()
    instructions = f"""Today's date is {today.strftime("%B %d, %Y")}.

Stay scoped to the current topic. Do not bring up earlier topics unless:
* The user explicitly asks, or
* a brief, optional follow-up question would feel natural to a human in this moment.

This conversation may include responses from several AI models. Earlier assistant messages are labeled in the format:

[assistant:model=<model-name>]

You are the AI model "{model}". Speak only as "{model}".

IMPORTANT: These labels show which model wrote each response and are NOT part of the message content.
Do NOT include your own label in your response, the system adds it automatically."""

    if user_instructions.strip():
        instructions += (
            "\n\nAdditionally, the user provided the following instructions:\n"
            + user_instructions.strip()
        )
    return instructions


def format_memory_context(memories: list[str]) -> str:
    lines = "\n".join(f"* {memory}" for memory in memories)
    return (
        f"Relevant long-term user context:\n{lines}\n\n"
        "Use this only when relevant to the request."
    )


def label_message(message: Message, previous: Message | None) -> Message:
    """
    Reshape a chain message for model context.

    Files are announced by a numbered text part, quote markers become ``>``
    and the first text part gets a speaker header.
    """
    data: list[DataPart] = []
    file_number = 1
    first_text = True

    for part in message.data:
        if isinstance(part, FilePart):
            data.append(TextPart(value=f"Attached file #{file_number} ({part.name}):"))
            data.append(part)
            file_number += 1
        elif isinstance(part, TextPart):
            value = part.value.replace("::>::", ">")
            if first_text:
                value = _header(message, previous) + value
                first_text = False
            data.append(part.model_copy(update={"value": value}))
        else:
            data.append(part)

    return message.model_copy(update={"data": data})


def _header(message: Message, previous: Message | None) -> str:
    if message.author == Author.MODEL:
        return f"[assistant:model={message.config.model}]\n"

    header = "[user]\n"
    if previous is not None:
        delay = describe_delay(previous.created_at, message.created_at)
        if delay != "just now":
            verb = "have" if delay.endswith("s") else "has"
            header += f"[Conversation timing: {delay} {verb} passed since the last message.]\n"
    return header


class ReplyAccumulator:
    """
    Folds streamed deltas into one growing reply.

    - consecutive text deltas extend the last text part
    - the first text of a reply loses its leading whitespace
    - thoughts, files and aborts are appended as their own parts
    - StreamEnd records the response metadata
    """

    def __init__(self, message_id: str, chat_id: str):
        self.message_id = message_id
        self.chat_id = chat_id
        self.data: list[DataPart] = []
        self.metadata: ResponseMetadata | None = None
        self.thinking = False
        self.generating = False
        self.cancelled = False
        self._has_text = False

    def apply(self, delta: Delta) -> bool:
        """
        Fold one delta.

        Returns:
            False once the stream should stop (an abort was received)
        """
        if isinstance(delta, StreamEnd):
            if delta.metadata is not None:
                self.metadata = delta.metadata
        elif isinstance(delta, AbortPart):
            self.abort()
            return False
        elif isinstance(delta, ThoughtPart):
            self.thinking = True
            self.data.append(delta)
        elif isinstance(delta, TextPart):
            self._append_text(delta)
        elif isinstance(delta, FilePart):
            self.data.append(delta)
        else:
            logger.warning(f"Ignoring unexpected delta {type(delta).__name__}")
        return True

    def abort(self) -> None:
        if not self.data or not isinstance(self.data[-1], AbortPart):
            self.data.append(AbortPart())

    def snapshot(self, done: bool = False) -> ReplySnapshot:
        return ReplySnapshot(
            message_id=self.message_id,
            chat_id=self.chat_id,
            data=list(self.data),
            thinking=self.thinking,
            generating=self.generating,
            done=done,
            cancelled=self.cancelled,
        )

    def _append_text(self, delta: TextPart) -> None:
        value = delta.value
        if not self._has_text:
            value = value.lstrip()
            if not value:
                return
            self._has_text = True

        self.thinking = False
        self.generating = True

        last = self.data[-1] if self.data else None
        if isinstance(last, TextPart):
            self.data[-1] = last.model_copy(update={"value": last.value + value})
        else:
            self.data.append(delta.model_copy(update={"value": value}))


class GenerationOrchestrator:
    """
    Runs reply turns for a chat.

    Usage:
        orchestrator = GenerationOrchestrator(editor, memory_store, registry)
        replies = await orchestrator.run(user_message.id, user_id, cancel=token)
    """

    def __init__(
        self,
        editor: ChainEditor,
        memory_store: MemoryStore,
        registry: ModelServiceRegistry,
        config: GenerationConfig | None = None,
        embeddings: EmbeddingsConfig | None = None,
        relevance: RelevanceConfig | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            editor: Chain editor for reading and persisting messages
            memory_store: Source of relevant long-term memories
            registry: Model services by name
            config: Flush interval and user instructions
            embeddings: Embedding service used to look up memories (None disables)
            relevance: Memory selection bounds
        """
        self.editor = editor
        self.memory_store = memory_store
        self.registry = registry
        self.config = config or GenerationConfig()
        self.embeddings = embeddings or EmbeddingsConfig()
        self.relevance = relevance or RelevanceConfig()

    async def run(
        self,
        message_id: str,
        user_id: str,
        cancel: CancellationToken | None = None,
        on_update: SnapshotCallback | None = None,
    ) -> list[Message]:
        """
        Generate replies from a user message onward.

        Args:
            message_id: The user message that changed (new, edited or retried)
            user_id: Owner of the chat
            cancel: Stops the running reply; what was received is kept
            on_update: Receives throttled snapshots of the reply being written

        Returns:
            The persisted replies, in chain order

        Raises:
            NotFoundError: Unknown message or chat
            InvalidStateError: The message is not a user message
            UpstreamServiceError: The model service failed; the originating
                message and its reply have been deleted
        """
        origin = await self.editor.get_message(message_id, user_id)
        if origin.author != Author.USER:
            raise InvalidStateError(
                f"Replies are generated for user messages, got {origin.author.value}",
                {"message_id": message_id},
            )
        chat = await self.editor.get_chat(origin.chat_id, user_id)
        cancel = cancel or CancellationToken()

        replies: list[Message] = []
        chain = await self.editor.list_messages(chat.id, include_metadata=True)
        index = next((i for i, m in enumerate(chain) if m.id == message_id), None)
        if index is None:
            raise InvalidStateError(
                f"Message {message_id} is not reachable in its chain", {"chat_id": chat.id}
            )

        while index < len(chain) and not cancel.cancelled:
            turn = chain[index]
            if turn.author != Author.USER:
                index += 1
                continue

            successor = await self.editor.successor(turn.id)
            if successor is not None and successor.author != Author.MODEL:
                successor = None
            service = self.registry.get((successor or origin).config.service)

            try:
                reply = await self._prepare_reply(chat, turn, successor, origin.config)
                context = await self._build_context(chat, chain[: index + 1])
                replies.append(await self._generate(service, reply, context, cancel, on_update))
            except TinyChatError:
                raise
            except Exception as e:
                await self._rollback(origin)
                logger.error(
                    "Model service failed while replying to {}: {}",
                    turn.id,
                    e,
                    extra={"chat_id": chat.id, "error_type": type(e).__name__},
                )
                raise UpstreamServiceError(
                    f"Model service failed: {e}",
                    {"chat_id": chat.id, "message_id": turn.id},
                    original_data=list(origin.data),
                ) from e

            chain = await self.editor.list_messages(chat.id, include_metadata=True)
            ids = [m.id for m in chain]
            index = ids.index(replies[-1].id) + 1 if replies[-1].id in ids else len(chain)

        return replies

    async def _prepare_reply(
        self, chat: Chat, turn: Message, existing: Message | None, config: ModelConfig
    ) -> Message:
        """Clear the existing reply to ``turn`` (keeping its config) or insert an empty one."""
        if existing is not None:
            return await self.editor.edit_message(
                existing.id, Author.MODEL, existing.config, [], None, truncate=False
            )

        reply = Message(
            id=generate_message_id(),
            chat_id=chat.id,
            folder_id=chat.folder_id,
            user_id=chat.user_id,
            author=Author.MODEL,
            config=config,
        )
        return await self.editor.insert_after(chat.id, turn.id, reply)

    async def _build_context(self, chat: Chat, history: list[Message]) -> list[Message]:
        turn = history[-1]
        context: list[Message] = []

        memories = await self._relevant_memories(chat, turn)
        if memories:
            context.append(
                Message(
                    id=generate_message_id(),
                    chat_id=chat.id,
                    folder_id=chat.folder_id,
                    user_id=chat.user_id,
                    author=Author.USER,
                    config=turn.config,
                    data=[TextPart(value=format_memory_context(memories))],
                    created_at=history[0].created_at,
                )
            )

        for i, message in enumerate(history):
            context.append(label_message(message, history[i - 1] if i > 0 else None))
        return context

    async def _relevant_memories(self, chat: Chat, turn: Message) -> list[str]:
        if chat.incognito or chat.temporary or not self.embeddings.service:
            return []

        text = scrub_text(extract_text(turn.data))
        if not text:
            return []

        try:
            service = self.registry.get(self.embeddings.service)
            vectors = await service.embed(
                [text], ModelConfig(service=self.embeddings.service, model=self.embeddings.model)
            )
            memories = await self.memory_store.list_relevant(
                chat.user_id, vectors[0], SearchOptions(**self.relevance.model_dump())
            )
        except Exception as e:
            logger.warning(
                "Replying without long-term context: {}",
                e,
                extra={"chat_id": chat.id, "error_type": type(e).__name__},
            )
            return []

        logger.debug(f"Using {len(memories)} relevant memories", extra={"chat_id": chat.id})
        return [memory.as_context() for memory in memories]

    async def _generate(
        self,
        service: ModelService,
        reply: Message,
        context: list[Message],
        cancel: CancellationToken,
        on_update: SnapshotCallback | None,
    ) -> Message:
        config = service.prepare_config(reply.config)
        instructions = build_instructions(config.model, self.config.instructions)

        logger.info(
            f"Replying with {config.service}/{config.model}",
            extra={"chat_id": reply.chat_id, "reply_id": reply.id, "context": len(context)},
        )

        accumulator = ReplyAccumulator(reply.id, reply.chat_id)
        stream = service.generate(instructions, context, config, cancel)
        await self._consume(stream, accumulator, cancel, on_update)

        if cancel.cancelled:
            accumulator.cancelled = True
            accumulator.abort()
            logger.info(f"Reply {reply.id} cancelled", extra={"reason": cancel.reason})

        await self._emit(on_update, accumulator.snapshot(done=True))

        return await self.editor.edit_message(
            reply.id,
            Author.MODEL,
            config,
            accumulator.data,
            accumulator.metadata,
            truncate=False,
        )

    async def _consume(
        self,
        stream: AsyncIterator[Delta],
        accumulator: ReplyAccumulator,
        cancel: CancellationToken,
        on_update: SnapshotCallback | None,
    ) -> None:
        """Pump the stream through a queue, racing reads against cancellation."""
        queue: asyncio.Queue[Any] = asyncio.Queue()
        producer = asyncio.create_task(self._produce(stream, queue))
        cancelled = asyncio.ensure_future(cancel.wait())
        loop = asyncio.get_running_loop()
        interval = self.config.flush_interval_ms / 1000
        last_flush = loop.time()

        try:
            while not cancel.cancelled:
                read = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                if read not in done:
                    read.cancel()
                    break

                item = read.result()
                if item is _END:
                    break
                if isinstance(item, _ProducerFailure):
                    raise item.error
                if not accumulator.apply(item):
                    break

                now = loop.time()
                if now - last_flush >= interval:
                    await self._emit(on_update, accumulator.snapshot())
                    last_flush = now
        finally:
            cancelled.cancel()
            producer.cancel()
            await asyncio.wait({producer})

    @staticmethod
    async def _produce(stream: AsyncIterator[Delta], queue: asyncio.Queue) -> None:
        try:
            async for delta in stream:
                queue.put_nowait(delta)
            queue.put_nowait(_END)
        except Exception as e:
            queue.put_nowait(_ProducerFailure(e))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    @staticmethod
    async def _emit(on_update: SnapshotCallback | None, snapshot: ReplySnapshot) -> None:
        if on_update is None:
            return
        result = on_update(snapshot)
        if inspect.isawaitable(result):
            await result

    async def _rollback(self, origin: Message) -> None:
        try:
            await self.editor.delete_pair(origin.id)
        except TinyChatError as e:
            logger.error(
                "Rollback of {} failed: {}",
                origin.id,
                e,
                extra={"chat_id": origin.chat_id, "context": e.context},
            )
        else:
            logger.info(f"Rolled back {origin.id} and its reply", extra={"chat_id": origin.chat_id})
