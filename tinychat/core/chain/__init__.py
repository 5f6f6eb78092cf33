"""
Message chain components for TinyChat.

- ChainStore: read chains in order
- ChainEditor: atomic chain, chat and folder mutations
"""

from tinychat.core.chain.chain_editor import ChainEditor
from tinychat.core.chain.chain_store import ChainStore, linearize

__all__ = [
    "ChainStore",
    "ChainEditor",
    "linearize",
]
