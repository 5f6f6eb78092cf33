"""
Conversation service - sending messages and running replies.

Ties the chain editor and the generation orchestrator together the way a
client uses them: store (or edit) the user's message, title a fresh chat
after its first message, then stream the replies. One reply runs per chat at
a time; starting another cancels the one in flight and waits for it to
finish before touching the chain.
"""

import asyncio

from tinychat.core.chain.chain_editor import ChainEditor
from tinychat.models.message import Author, DataPart, Message, ModelConfig
from tinychat.services.generation import GenerationOrchestrator, SnapshotCallback
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.logger import get_logger
from tinychat.utils.text import extract_text, scrub_text

logger = get_logger(__name__)

TITLE_LENGTH = 100


class ConversationService:
    """
    Entry point for sending messages.

    Usage:
        conversation = ConversationService(editor, orchestrator)
        message, replies = await conversation.send(user_id, config, [TextPart(value="Hi")])
        conversation.cancel(message.chat_id)
    """

    def __init__(self, editor: ChainEditor, orchestrator: GenerationOrchestrator):
        self.editor = editor
        self.orchestrator = orchestrator
        self._active: dict[str, CancellationToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def send(
        self,
        user_id: str,
        config: ModelConfig,
        data: list[DataPart],
        on_update: SnapshotCallback | None = None,
        **options,
    ) -> tuple[Message, list[Message]]:
        """
        Store a user message and generate the replies that follow it.

        ``options`` are passed on to ``submit``.

        Returns:
            The stored user message and the generated replies

        Raises:
            UpstreamServiceError: The model failed; the message was rolled back
        """
        message = await self.submit(user_id, config, data, **options)
        replies = await self.reply(message.id, user_id, on_update)
        return message, replies

    async def submit(
        self,
        user_id: str,
        config: ModelConfig,
        data: list[DataPart],
        chat_id: str | None = None,
        previous_id: str | None = None,
        edit_id: str | None = None,
        truncate: bool = False,
        temporary: bool = False,
        incognito: bool = False,
    ) -> Message:
        """
        Store (or edit) a user message without generating a reply.

        A chat without a title is named after the message's text.

        Args:
            user_id: Sender
            config: Model that should answer
            data: Message content
            chat_id: Chat to continue; None starts a new one
            previous_id: Insert after this message instead of appending
            edit_id: Replace this message instead of creating one
            truncate: With ``edit_id``, drop everything after the edited message
            temporary: Start (or continue) a temporary chat
            incognito: Start the new chat without long-term memory
        """
        if edit_id is not None:
            message = await self.editor.edit_message(
                edit_id, Author.USER, config, data, None, truncate=truncate, user_id=user_id
            )
            logger.info(f"Edited message {edit_id}", extra={"truncate": truncate})
        else:
            message = await self.editor.create_message(
                user_id,
                Author.USER,
                config,
                data,
                chat_id=chat_id,
                previous_id=previous_id,
                temporary=temporary,
                incognito=incognito,
            )
            logger.info(f"Sent message {message.id}", extra={"chat_id": message.chat_id})

        chat = await self.editor.get_chat(message.chat_id, user_id)
        if not chat.title:
            title = scrub_text(extract_text(data), TITLE_LENGTH)
            if title:
                await self.editor.rename_chat(chat.id, title, user_id)

        return message

    async def reply(
        self, message_id: str, user_id: str, on_update: SnapshotCallback | None = None
    ) -> list[Message]:
        """
        (Re)generate the replies from a user message onward.

        A reply already running in the chat is cancelled and awaited first.
        A request superseded while it was still waiting returns no replies.
        """
        message = await self.editor.get_message(message_id, user_id)
        chat_id = message.chat_id

        previous = self._active.get(chat_id)
        if previous is not None:
            previous.cancel("superseded")

        token = CancellationToken()
        self._active[chat_id] = token
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        try:
            async with lock:
                if token.cancelled:
                    logger.info(f"Reply for {message_id} superseded before it started")
                    return []
                return await self.orchestrator.run(message_id, user_id, token, on_update)
        finally:
            if self._active.get(chat_id) is token:
                del self._active[chat_id]
                self._locks.pop(chat_id, None)

    def cancel(self, chat_id: str, reason: str | None = "cancelled by user") -> bool:
        """
        Stop the reply running in a chat.

        Returns:
            False if nothing was running
        """
        token = self._active.get(chat_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def is_running(self, chat_id: str) -> bool:
        return chat_id in self._active
