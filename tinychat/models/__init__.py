"""
Data models for TinyChat.

- Folder, Chat: containers
- Message, Author, DataPart variants: the chain nodes and their content
- ModelConfig, ModelArg, ModelDescriptor: model selection
- ResponseMetadata variants: provider response metadata
- Memory, Summary, MemoryCandidate, ExtractionResult: long-term context
- StreamEnd, Delta, ReplySnapshot: streaming
"""

from tinychat.models.chat import Chat, Folder
from tinychat.models.memory import (
    ExtractionResult,
    Memory,
    MemoryCandidate,
    MemoryCategory,
    MemoryStability,
    PendingChat,
    PendingEmbeddings,
    Summary,
)
from tinychat.models.message import (
    AbortPart,
    Author,
    DataPart,
    FilePart,
    ListArg,
    Message,
    ModelArg,
    ModelConfig,
    ModelDescriptor,
    OllamaMetadata,
    OpaqueMetadata,
    OpenAIMetadata,
    OtherPart,
    RangeArg,
    ResponseMetadata,
    TextPart,
    ThoughtPart,
    ToolCallPart,
    ToolCallReturnPart,
    data_adapter,
)
from tinychat.models.stream import Delta, ReplySnapshot, StreamEnd

__all__ = [
    "Folder",
    "Chat",
    "Author",
    "Message",
    "DataPart",
    "TextPart",
    "ThoughtPart",
    "FilePart",
    "ToolCallPart",
    "ToolCallReturnPart",
    "AbortPart",
    "OtherPart",
    "data_adapter",
    "ModelConfig",
    "ModelArg",
    "ListArg",
    "RangeArg",
    "ModelDescriptor",
    "ResponseMetadata",
    "OllamaMetadata",
    "OpenAIMetadata",
    "OpaqueMetadata",
    "Memory",
    "MemoryCandidate",
    "MemoryCategory",
    "MemoryStability",
    "Summary",
    "ExtractionResult",
    "PendingChat",
    "PendingEmbeddings",
    "StreamEnd",
    "Delta",
    "ReplySnapshot",
]
