"""
Tests for chain linearization and read access.
"""

from datetime import datetime

import pytest

from tinychat.core.chain.chain_store import linearize
from tinychat.models.message import Author, Message, ModelConfig
from tinychat.utils.exceptions import InvalidStateError, NotFoundError


def _node(message_id: str, previous_id: str | None) -> Message:
    return Message(
        id=message_id,
        chat_id="chat_1",
        folder_id="fld_1",
        user_id="user-1",
        author=Author.USER,
        config=ModelConfig(service="debug", model="echo"),
        previous_id=previous_id,
        created_at=datetime(2024, 1, 1),
    )


@pytest.mark.unit
class TestLinearize:
    """Test ordering of unordered chain rows."""

    def test_empty(self):
        assert linearize([]) == []

    def test_single(self):
        node = _node("a", None)
        assert linearize([node]) == [node]

    def test_orders_any_permutation(self):
        """Test that storage order does not matter."""
        nodes = [_node("c", "b"), _node("a", None), _node("d", "c"), _node("b", "a")]

        assert [m.id for m in linearize(nodes)] == ["a", "b", "c", "d"]

    def test_no_root_returns_input(self):
        """Test that a cycle without a root is returned unchanged."""
        nodes = [_node("a", "b"), _node("b", "a")]

        assert linearize(nodes) == nodes

    def test_gap_returns_reachable_prefix(self):
        """Test that messages past a broken link are dropped."""
        nodes = [_node("a", None), _node("b", "a"), _node("d", "c")]

        assert [m.id for m in linearize(nodes)] == ["a", "b"]

    def test_several_roots_follow_first(self):
        """Test that the first root wins when the chain is corrupt."""
        nodes = [_node("a", None), _node("x", None), _node("b", "a")]

        assert [m.id for m in linearize(nodes)] == ["a", "b"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestChainStore:
    """Test chain read operations."""

    async def test_list_messages_in_chain_order(self, editor, build_chain):
        chain = await build_chain("one", "two", "three")

        listed = await editor.list_messages(chain[0].chat_id)

        assert [m.id for m in listed] == [m.id for m in chain]

    async def test_get_message_not_found(self, editor):
        with pytest.raises(NotFoundError):
            await editor.get_message("msg_missing")

    async def test_tail(self, editor, build_chain):
        chain = await build_chain("one", "two")

        tail = await editor.tail(chain[0].chat_id)

        assert tail.id == chain[-1].id

    async def test_tail_of_empty_chat(self, editor):
        with pytest.raises(NotFoundError):
            await editor.tail("chat_missing")

    async def test_tail_with_several_candidates(self, editor, storage, build_chain):
        """Test that a forked chain is reported instead of silently picked."""
        chain = await build_chain("one", "two")
        await storage.set_previous(chain[1].id, None)

        with pytest.raises(InvalidStateError):
            await editor.tail(chain[0].chat_id)

    async def test_successor(self, editor, build_chain):
        chain = await build_chain("one", "two")

        assert (await editor.successor(chain[0].id)).id == chain[1].id
        assert await editor.successor(chain[1].id) is None
