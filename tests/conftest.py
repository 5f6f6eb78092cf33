"""
Shared test fixtures for all test modules.

Every test gets its own SQLite database under ``tmp_path``.
"""

from collections.abc import AsyncGenerator

import pytest

from tinychat.core.chain.chain_editor import ChainEditor
from tinychat.core.memory_store.memory_store import MemoryStore
from tinychat.core.model_service.debug import DebugModelService
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.core.storage.sqlite_store import SQLiteChatStorage
from tinychat.models.memory import MemoryCandidate, MemoryCategory, MemoryStability
from tinychat.models.message import Author, Message, ModelConfig, TextPart

USER_ID = "user-1"


def first_text(message: Message) -> str:
    """Text of the first text part of a message."""
    return next(part.value for part in message.data if isinstance(part, TextPart))


def candidate(fact: str, category: MemoryCategory = MemoryCategory.PREFERENCE) -> MemoryCandidate:
    return MemoryCandidate(
        fact=fact,
        category=category,
        stability=MemoryStability.LONG_TERM,
        evidence=[fact],
        confidence=0.9,
    )


@pytest.fixture
def model_config() -> ModelConfig:
    return ModelConfig(service="debug", model="echo")


@pytest.fixture
async def storage(tmp_path) -> AsyncGenerator[SQLiteChatStorage, None]:
    """Create an initialized SQLite store in a temporary directory."""
    store = SQLiteChatStorage(str(tmp_path / "tinychat.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def editor(storage) -> ChainEditor:
    return ChainEditor(storage)


@pytest.fixture
def memory_store(storage) -> MemoryStore:
    return MemoryStore(storage)


@pytest.fixture
def debug_service() -> DebugModelService:
    return DebugModelService()


@pytest.fixture
def registry(debug_service) -> ModelServiceRegistry:
    return ModelServiceRegistry([debug_service])


@pytest.fixture
def build_chain(editor, model_config):
    """
    Create a chat from alternating USER/MODEL texts.

    Returns the messages in chain order.
    """

    async def _build(*texts: str, user_id: str = USER_ID, **flags) -> list[Message]:
        messages: list[Message] = []
        for i, value in enumerate(texts):
            author = Author.USER if i % 2 == 0 else Author.MODEL
            message = await editor.create_message(
                user_id,
                author,
                model_config,
                [TextPart(value=value)],
                chat_id=messages[0].chat_id if messages else None,
                **(flags if not messages else {}),
            )
            messages.append(message)
        return messages

    return _build
