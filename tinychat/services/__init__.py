"""
Services for TinyChat.

High-level workflows composed from the core components:
- GenerationOrchestrator: Streams and persists replies
- ConversationService: Sends messages and tracks running replies
- EmbeddingSyncJob: Fills in missing embeddings
- MemoryExtractor: Turns stale chats into summaries and memories
- PairingService: Short-lived device pairings
"""

from tinychat.services.conversation import ConversationService
from tinychat.services.embedding_sync import EmbeddingSyncJob
from tinychat.services.generation import GenerationOrchestrator, ReplyAccumulator
from tinychat.services.memory_extraction import MemoryExtractor
from tinychat.services.pairing import PairingService

__all__ = [
    "GenerationOrchestrator",
    "ReplyAccumulator",
    "ConversationService",
    "EmbeddingSyncJob",
    "MemoryExtractor",
    "PairingService",
]
