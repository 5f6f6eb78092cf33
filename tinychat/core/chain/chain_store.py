"""
Read side of a chat's message chain.

Messages come out of storage in arbitrary order; ``linearize`` rebuilds the
chain from the root by following ``previous_id`` links.
"""

from tinychat.core.storage.base import ChatStorage
from tinychat.models.message import Message, ResponseMetadata
from tinychat.utils.exceptions import InvalidStateError, NotFoundError
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


def linearize(messages: list[Message]) -> list[Message]:
    """
    Order messages root to tail.

    Never raises. When the chain is damaged, returns what can be recovered:
    the input unchanged if there is no root, otherwise the chain reachable from
    the root. Damage is logged as a warning.

    Args:
        messages: Messages of one chat, any order

    Returns:
        Messages in chain order
    """
    if len(messages) <= 1:
        return messages

    roots = [m for m in messages if m.previous_id is None]
    if not roots:
        logger.warning(
            "Chain has no root message, returning storage order",
            extra={"chat_id": messages[0].chat_id, "count": len(messages)},
        )
        return messages
    if len(roots) > 1:
        logger.warning(
            f"Chain has {len(roots)} root messages, following the first",
            extra={"chat_id": messages[0].chat_id, "roots": [m.id for m in roots]},
        )

    successors: dict[str, Message] = {}
    for message in messages:
        if message.previous_id is not None:
            successors.setdefault(message.previous_id, message)

    ordered = [roots[0]]
    current = roots[0]
    while len(ordered) < len(messages):
        current = successors.get(current.id)
        if current is None:
            break
        ordered.append(current)

    if len(ordered) < len(messages):
        logger.warning(
            f"Chain is broken: {len(messages) - len(ordered)} message(s) unreachable from root",
            extra={"chat_id": messages[0].chat_id, "reachable": len(ordered)},
        )

    return ordered


class ChainStore:
    """Read access to chat chains."""

    def __init__(self, storage: ChatStorage):
        self.storage = storage

    async def list_messages(
        self, chat_id: str, user_id: str | None = None, include_metadata: bool = False
    ) -> list[Message]:
        """
        List a chat's messages in chain order.

        Metadata is left out unless ``include_metadata`` is set; use
        ``list_metadata`` to fetch it for specific messages.
        """
        messages = await self.storage.list_chat_messages(
            chat_id, user_id=user_id, include_metadata=include_metadata
        )
        return linearize(messages)

    async def list_metadata(
        self, message_ids: list[str], user_id: str | None = None
    ) -> dict[str, ResponseMetadata | None]:
        return await self.storage.list_metadata(message_ids, user_id=user_id)

    async def get_message(self, message_id: str, user_id: str | None = None) -> Message:
        message = await self.storage.get_message(message_id, user_id=user_id)
        if message is None:
            raise NotFoundError(f"Message not found: {message_id}", {"message_id": message_id})
        return message

    async def tail(self, chat_id: str) -> Message:
        """The message nothing points at. Raises if the chat has zero or several."""
        tails = await self.storage.find_tails(chat_id)
        if not tails:
            raise NotFoundError(f"Chat has no messages: {chat_id}", {"chat_id": chat_id})
        if len(tails) > 1:
            raise InvalidStateError(
                f"Chat {chat_id} has {len(tails)} tail messages",
                {"chat_id": chat_id, "tails": [m.id for m in tails]},
            )
        return tails[0]

    async def successor(self, message_id: str) -> Message | None:
        return await self.storage.find_successor(message_id)
