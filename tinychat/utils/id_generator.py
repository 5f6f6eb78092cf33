"""
ID generation utilities for TinyChat.

Provides consistent ID generation for all entity types:
- Folders: fld_xxx
- Chats: chat_xxx
- Messages: msg_xxx
- Memories: mem_xxx
- Summaries: sum_xxx
- Pairings: pair_xxx
"""

from uuid import uuid4


def _hex_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_folder_id() -> str:
    """
    Generate unique Folder ID.

    Returns:
        ID in format "fld_xxx" where xxx is 12 hex characters
    """
    return _hex_id("fld")


def generate_chat_id() -> str:
    """
    Generate unique Chat ID.

    Returns:
        ID in format "chat_xxx" where xxx is 12 hex characters
    """
    return _hex_id("chat")


def generate_message_id() -> str:
    """
    Generate unique Message ID.

    Returns:
        ID in format "msg_xxx" where xxx is 12 hex characters
    """
    return _hex_id("msg")


def generate_memory_id() -> str:
    """
    Generate unique Memory ID.

    Returns:
        ID in format "mem_xxx" where xxx is 12 hex characters
    """
    return _hex_id("mem")


def generate_summary_id() -> str:
    """
    Generate unique Summary ID.

    Returns:
        ID in format "sum_xxx" where xxx is 12 hex characters
    """
    return _hex_id("sum")


def generate_pairing_id() -> str:
    """Generate unique device pairing ID ("pair_xxx")."""
    return _hex_id("pair")
