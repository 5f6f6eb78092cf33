"""
Long-term memory and summary models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from tinychat.models.message import Message, ModelConfig


class MemoryCategory(str, Enum):
    """What a remembered fact is about."""

    IDENTITY = "IDENTITY"
    PREFERENCE = "PREFERENCE"
    PROJECT = "PROJECT"
    SKILL = "SKILL"
    CONSTRAINT = "CONSTRAINT"
    OTHER = "OTHER"


class MemoryStability(str, Enum):
    """How long a fact is expected to stay relevant."""

    SHORT_TERM = "SHORT_TERM"
    LONG_TERM = "LONG_TERM"
    PERMANENT = "PERMANENT"


class MemoryCandidate(BaseModel):
    """A fact proposed by the extraction model, before it is stored."""

    model_config = {"extra": "ignore"}

    fact: str = Field(
        ...,
        description="A self-contained statement that remains understandable without conversation context.",
    )
    category: MemoryCategory = Field(..., description="The category that the fact belongs to.")
    stability: MemoryStability = Field(
        ..., description="How long the fact is expected to be relevant."
    )
    evidence: list[str] = Field(
        default_factory=list, description="Quotes or paraphrases supporting the fact."
    )
    confidence: float = Field(
        ..., ge=0.0, le=1.0, description="A confidence score between 0 and 1."
    )


class Memory(MemoryCandidate):
    """
    A stored fact about the user.

    Memories are never deleted when superseded: a new extraction for the same
    chat flips the previous batch to ``latest=False``.
    """

    id: str = Field(..., description="Unique memory ID (mem_xxx)")
    user_id: str
    folder_id: str
    chat_id: str
    config: ModelConfig
    embedding: list[float] | None = None
    latest: bool = True
    created_at: datetime = Field(default_factory=datetime.now)

    def as_context(self) -> str:
        """Render the memory as one line of model context (also what gets embedded)."""
        return f"{self.category.value}: {self.fact}"


class Summary(BaseModel):
    """A short summary of a chat, written by the extraction model."""

    id: str = Field(..., description="Unique summary ID (sum_xxx)")
    user_id: str
    folder_id: str
    chat_id: str
    config: ModelConfig
    content: str
    embedding: list[float] | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class ExtractionResult(BaseModel):
    """Structured output expected from the memory extraction model."""

    model_config = {"extra": "ignore"}

    summary: str = Field(..., description="A concise summary of the conversation.")
    memories: list[MemoryCandidate] = Field(
        default_factory=list, description="A list of long-term memory candidates."
    )


class PendingChat(BaseModel):
    """A chat with messages newer than its latest memory batch."""

    id: str
    last_message_at: datetime
    last_memory_at: datetime | None = None


class PendingEmbeddings(BaseModel):
    """Everything of one user that still lacks an embedding."""

    messages: list[Message] = Field(default_factory=list)
    summaries: list[Summary] = Field(default_factory=list)
    memories: list[Memory] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.messages or self.summaries or self.memories)
