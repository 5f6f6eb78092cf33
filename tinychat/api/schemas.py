"""
Request and response models for the HTTP API.
"""

from typing import Any

from pydantic import BaseModel, Field

from tinychat.models.memory import MemoryCandidate
from tinychat.models.message import Author, DataPart, Message, ModelConfig, ResponseMetadata
from tinychat.models.stream import ReplySnapshot


class CreateMessageRequest(BaseModel):
    """Request model for creating a message."""

    author: Author = Author.USER
    config: ModelConfig
    data: list[DataPart]
    metadata: ResponseMetadata | None = None
    chat_id: str | None = Field(default=None, description="None starts a new folder and chat")
    previous_id: str | None = Field(default=None, description="Insert after this message")
    temporary: bool = False
    incognito: bool = False


class EditMessageRequest(BaseModel):
    """Request model for editing a message."""

    author: Author
    config: ModelConfig
    data: list[DataPart]
    metadata: ResponseMetadata | None = None
    truncate: bool = Field(default=False, description="Delete every later message")


class MetadataRequest(BaseModel):
    ids: list[str]


class CloneChatRequest(BaseModel):
    """Request model for forking a chat."""

    until_message_id: str
    title: str | None = None
    new_folder: bool = False


class RenameChatRequest(BaseModel):
    title: str = Field(..., min_length=1)


class CreateMemoriesRequest(BaseModel):
    config: ModelConfig
    memories: list[MemoryCandidate]


class CreateSummaryRequest(BaseModel):
    config: ModelConfig
    content: str


class RelevantMemoriesRequest(BaseModel):
    """Request model for relevant memory lookup."""

    embedding: list[float] = Field(..., min_length=1)
    max_count: int | None = Field(default=None, ge=1)
    min_count: int | None = Field(default=None, ge=0)
    diversity_weight: float | None = Field(default=None, ge=0.0, le=1.0)


class SaveEmbeddingsRequest(BaseModel):
    embeddings: dict[str, list[float]]


class SendMessageRequest(BaseModel):
    """Request model for sending a message and streaming its reply."""

    config: ModelConfig
    data: list[DataPart]
    chat_id: str | None = None
    previous_id: str | None = None
    edit_id: str | None = Field(default=None, description="Replace this message instead")
    truncate: bool = False
    temporary: bool = False
    incognito: bool = False


class StreamEvent(BaseModel):
    """
    One line of a streamed reply.

    ``snapshot`` lines repeat while the reply grows; the stream ends with a
    single ``done`` or ``error`` line.
    """

    event: str  # "message", "snapshot", "done" or "error"
    message: Message | None = None
    snapshot: ReplySnapshot | None = None
    replies: list[Message] | None = None
    status: int | None = None
    detail: str | None = None
    original_data: list[Any] | None = None


class PairingResponse(BaseModel):
    id: str


class FinalizePairingResponse(BaseModel):
    accepted: bool
    user_id: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    services: list[str]
    embeddings: str | None
    memory_enabled: bool
