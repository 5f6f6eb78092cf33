"""
Write side of a chat's message chain.

Every operation runs inside a single storage transaction so the chain
(one root, one successor per message, no gaps) is never observed half-edited.
Emptied containers are removed: a chat with no messages and a folder with no
chats do not exist.
"""

from datetime import datetime

from tinychat.core.chain.chain_store import ChainStore, linearize
from tinychat.models.chat import Chat, Folder
from tinychat.models.message import Author, DataPart, Message, ModelConfig, ResponseMetadata
from tinychat.utils.exceptions import InvalidStateError, NotFoundError, ValidationError
from tinychat.utils.id_generator import generate_chat_id, generate_folder_id, generate_message_id
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class ChainEditor(ChainStore):
    """
    Mutating operations on folders, chats and message chains.

    Usage:
        editor = ChainEditor(storage)
        first = await editor.create_message(user_id, Author.USER, config, data)
        reply = await editor.insert_after(first.chat_id, first.id, reply)
    """

    # ═══════════════════════════════════════════════════════════
    # CHAIN OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def append(self, chat_id: str, message: Message) -> Message:
        """Link ``message`` after the current tail of the chat."""
        async with self.storage.transaction():
            chat = await self._require_chat(chat_id)
            tail = await self.tail(chat_id)

            message = message.model_copy(
                update={
                    "chat_id": chat.id,
                    "folder_id": chat.folder_id,
                    "previous_id": tail.id,
                }
            )
            await self.storage.add_message(message)

        logger.debug(f"Appended {message.id} after {tail.id}", extra={"chat_id": chat_id})
        return message

    async def insert_after(self, chat_id: str, after_id: str, message: Message) -> Message:
        """
        Splice ``message`` between ``after_id`` and its successor.

        If ``after_id`` was the tail, the new message becomes the tail.
        """
        async with self.storage.transaction():
            chat = await self._require_chat(chat_id)
            anchor = await self.storage.get_message(after_id, include_metadata=False)
            if anchor is None or anchor.chat_id != chat_id:
                raise NotFoundError(
                    f"Message not found in chat: {after_id}",
                    {"chat_id": chat_id, "message_id": after_id},
                )

            successor = await self.storage.find_successor(after_id)
            if successor is not None:
                # detach first: previous_id is unique
                await self.storage.set_previous(successor.id, None)

            message = message.model_copy(
                update={
                    "chat_id": chat.id,
                    "folder_id": chat.folder_id,
                    "previous_id": after_id,
                }
            )
            await self.storage.add_message(message)

            if successor is not None:
                await self.storage.set_previous(successor.id, message.id)

        logger.debug(
            f"Inserted {message.id} after {after_id}",
            extra={"chat_id": chat_id, "relinked": successor.id if successor else None},
        )
        return message

    async def create_message(
        self,
        user_id: str,
        author: Author,
        config: ModelConfig,
        data: list[DataPart],
        metadata: ResponseMetadata | None = None,
        chat_id: str | None = None,
        previous_id: str | None = None,
        temporary: bool = False,
        incognito: bool = False,
    ) -> Message:
        """
        Create a message, starting a new folder and chat when no chat is given.

        Args:
            user_id: Owner of the message
            author: USER or MODEL
            config: Model configuration
            data: Content parts
            metadata: Provider response metadata
            chat_id: Existing chat to add to; None starts a new folder + chat
            previous_id: Insert after this message instead of appending
            temporary: Request an ephemeral chat
            incognito: Start the new chat without long-term memory

        Returns:
            The stored message

        Raises:
            NotFoundError: Unknown chat or previous message
            InvalidStateError: Temporary message requested in a regular chat
        """
        message = Message(
            id=generate_message_id(),
            chat_id=chat_id or "",
            folder_id="",
            user_id=user_id,
            author=author,
            config=config,
            data=data,
            metadata=metadata,
        )

        if chat_id is None:
            if previous_id is not None:
                raise ValidationError(
                    "previous_id requires a chat_id", {"previous_id": previous_id}
                )
            return await self._create_with_new_chat(message, temporary, incognito)

        async with self.storage.transaction():
            chat = await self._require_chat(chat_id, user_id)
            if temporary and not chat.temporary:
                raise InvalidStateError(
                    "Chat cannot be made temporary", {"chat_id": chat_id}
                )

            if previous_id is not None:
                return await self.insert_after(chat_id, previous_id, message)
            return await self.append(chat_id, message)

    async def truncate_after(self, message_id: str, user_id: str | None = None) -> list[str]:
        """
        Delete every message after ``message_id`` in its chain.

        Returns:
            IDs of the deleted messages
        """
        async with self.storage.transaction():
            message = await self.storage.get_message(message_id, user_id, include_metadata=False)
            if message is None:
                raise NotFoundError(f"Message not found: {message_id}", {"message_id": message_id})

            chain = await self.list_messages(message.chat_id)
            ids = [m.id for m in chain]
            if message_id not in ids:
                raise InvalidStateError(
                    f"Message {message_id} is not reachable in its chain",
                    {"chat_id": message.chat_id},
                )
            removed = ids[ids.index(message_id) + 1 :]
            await self.storage.delete_messages(removed)

        if removed:
            logger.info(
                f"Truncated {len(removed)} message(s) after {message_id}",
                extra={"chat_id": message.chat_id},
            )
        return removed

    async def edit_message(
        self,
        message_id: str,
        author: Author,
        config: ModelConfig,
        data: list[DataPart],
        metadata: ResponseMetadata | None = None,
        truncate: bool = False,
        user_id: str | None = None,
    ) -> Message:
        """
        Replace a message's content, optionally dropping everything after it.

        ``created_at`` is reset to now, so an edited message counts as new
        activity.
        """
        async with self.storage.transaction():
            existing = await self.storage.get_message(message_id, user_id, include_metadata=False)
            if existing is None:
                raise NotFoundError(f"Message not found: {message_id}", {"message_id": message_id})

            if truncate:
                await self.truncate_after(message_id)

            updated = existing.model_copy(
                update={
                    "author": author,
                    "config": config,
                    "data": data,
                    "metadata": metadata,
                    "created_at": datetime.now(),
                }
            )
            await self.storage.update_message(updated)

        return updated

    async def delete_pair(self, message_id: str, user_id: str | None = None) -> None:
        """
        Delete a message together with its partner turn.

        A USER message takes its reply (the successor) with it; a MODEL message
        takes the prompt (the predecessor). A partner of the same author is left
        alone. If the chat would end up empty the chat goes, and the folder with
        it when this was the folder's only chat.
        """
        async with self.storage.transaction():
            message = await self.storage.get_message(message_id, user_id, include_metadata=False)
            if message is None:
                raise NotFoundError(f"Message not found: {message_id}", {"message_id": message_id})

            span = [message]
            if message.author == Author.USER:
                successor = await self.storage.find_successor(message.id)
                if successor is not None and successor.author == Author.MODEL:
                    span.append(successor)
            elif message.previous_id is not None:
                predecessor = await self.storage.get_message(
                    message.previous_id, include_metadata=False
                )
                if predecessor is not None and predecessor.author == Author.USER:
                    span.insert(0, predecessor)

            if await self.storage.count_chat_messages(message.chat_id) <= 2:
                await self._delete_chat_cascading(message.chat_id, message.folder_id)
                return

            survivor = await self.storage.find_successor(span[-1].id)
            await self.storage.delete_messages([m.id for m in span])
            if survivor is not None:
                await self.storage.set_previous(survivor.id, span[0].previous_id)

        logger.info(
            f"Deleted {len(span)} message(s) starting at {span[0].id}",
            extra={"chat_id": message.chat_id, "relinked": survivor.id if survivor else None},
        )

    async def clone_until(
        self,
        chat_id: str,
        until_message_id: str,
        title: str | None = None,
        new_folder: bool = False,
        user_id: str | None = None,
    ) -> Chat:
        """
        Fork a chat: copy its chain up to and including ``until_message_id``.

        Copies get fresh IDs and are relinked among themselves; the source
        chat is left untouched.

        Args:
            chat_id: Chat to fork
            until_message_id: Last message to copy
            title: Title of the new chat
            new_folder: Put the fork in a fresh folder instead of the source's
            user_id: Owner check

        Returns:
            The new chat
        """
        async with self.storage.transaction():
            source = await self._require_chat(chat_id, user_id)
            chain = linearize(
                await self.storage.list_chat_messages(chat_id, include_metadata=True)
            )

            ids = [m.id for m in chain]
            if until_message_id not in ids:
                raise NotFoundError(
                    f"Message not found in chat: {until_message_id}",
                    {"chat_id": chat_id, "message_id": until_message_id},
                )
            prefix = chain[: ids.index(until_message_id) + 1]

            if await self.storage.count_folder_chats(source.folder_id) == 1:
                await self.storage.update_folder_title(source.folder_id, source.title)

            folder_id = source.folder_id
            if new_folder:
                folder = Folder(id=generate_folder_id(), user_id=source.user_id, title=title)
                await self.storage.add_folder(folder)
                folder_id = folder.id

            clone = Chat(
                id=generate_chat_id(),
                folder_id=folder_id,
                user_id=source.user_id,
                title=title,
            )
            await self.storage.add_chat(clone)

            copies: list[Message] = []
            previous_id = None
            for message in prefix:
                copy = message.model_copy(
                    update={
                        "id": generate_message_id(),
                        "chat_id": clone.id,
                        "folder_id": folder_id,
                        "previous_id": previous_id,
                    }
                )
                copies.append(copy)
                previous_id = copy.id
            await self.storage.add_messages(copies)

        logger.info(
            f"Cloned {len(copies)} message(s) from {chat_id} into {clone.id}",
            extra={"folder_id": folder_id, "new_folder": new_folder},
        )
        return clone

    # ═══════════════════════════════════════════════════════════
    # CHATS & FOLDERS
    # ═══════════════════════════════════════════════════════════

    async def get_chat(self, chat_id: str, user_id: str | None = None) -> Chat:
        return await self._require_chat(chat_id, user_id)

    async def rename_chat(self, chat_id: str, title: str, user_id: str | None = None) -> Chat:
        """Retitle a chat; the folder follows when it carried the old title."""
        async with self.storage.transaction():
            chat = await self._require_chat(chat_id, user_id)
            folder = await self.storage.get_folder(chat.folder_id)
            await self.storage.update_chat_title(chat_id, title)
            if folder is not None and folder.title == chat.title:
                await self.storage.update_folder_title(folder.id, title)

        return chat.model_copy(update={"title": title})

    async def delete_chat(self, chat_id: str, user_id: str | None = None) -> None:
        async with self.storage.transaction():
            chat = await self._require_chat(chat_id, user_id)
            await self._delete_chat_cascading(chat.id, chat.folder_id)

    async def list_folders(self, user_id: str) -> list[Folder]:
        """
        Folders with at least one non-temporary chat, most recent activity first.

        Chats inside each folder are ordered the same way. Activity is the
        later of the chat's creation and its newest message.
        """
        folders = await self.storage.list_folders(user_id)

        def activity(chat: Chat) -> datetime:
            if chat.last_activity is None:
                return chat.created_at
            return max(chat.created_at, chat.last_activity)

        for folder in folders:
            folder.chats.sort(key=activity, reverse=True)
        folders.sort(key=lambda f: activity(f.chats[0]), reverse=True)
        return folders

    # ═══════════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════════

    async def _require_chat(self, chat_id: str, user_id: str | None = None) -> Chat:
        chat = await self.storage.get_chat(chat_id, user_id)
        if chat is None:
            raise NotFoundError(f"Chat not found: {chat_id}", {"chat_id": chat_id})
        return chat

    async def _create_with_new_chat(
        self, message: Message, temporary: bool, incognito: bool
    ) -> Message:
        folder = Folder(id=generate_folder_id(), user_id=message.user_id)
        chat = Chat(
            id=generate_chat_id(),
            folder_id=folder.id,
            user_id=message.user_id,
            temporary=temporary,
            incognito=incognito,
        )
        message = message.model_copy(
            update={"chat_id": chat.id, "folder_id": folder.id, "previous_id": None}
        )

        async with self.storage.transaction():
            await self.storage.add_folder(folder)
            await self.storage.add_chat(chat)
            await self.storage.add_message(message)

        logger.info(
            f"Started chat {chat.id} in folder {folder.id}",
            extra={"user_id": message.user_id, "temporary": temporary, "incognito": incognito},
        )
        return message

    async def _delete_chat_cascading(self, chat_id: str, folder_id: str) -> None:
        if await self.storage.count_folder_chats(folder_id) <= 1:
            await self.storage.delete_folder(folder_id)
            logger.info(f"Deleted folder {folder_id} with its last chat {chat_id}")
        else:
            await self.storage.delete_chat(chat_id)
            logger.info(f"Deleted chat {chat_id}", extra={"folder_id": folder_id})
