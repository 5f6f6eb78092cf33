"""
Message model and its typed content parts.

A message's ``data`` is an ordered list of parts discriminated on ``type``.
Provider response metadata and model arguments are closed tagged unions
with an opaque fallback, so unknown providers still round-trip.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class Author(str, Enum):
    """Who produced a message."""

    USER = "USER"
    MODEL = "MODEL"


# ═══════════════════════════════════════════════════════════
# DATA PARTS
# ═══════════════════════════════════════════════════════════


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    value: str
    hidden: bool | None = None


class ThoughtPart(BaseModel):
    type: Literal["thought"] = "thought"
    value: str


class FilePart(BaseModel):
    type: Literal["file"] = "file"
    name: str
    mime: str
    url: str
    inline: bool | None = None


class ToolCallPart(BaseModel):
    type: Literal["toolCall"] = "toolCall"
    id: str
    name: str
    args: Any = None


class ToolCallReturnPart(BaseModel):
    type: Literal["toolCallReturn"] = "toolCallReturn"
    id: str
    result: Literal["success", "failure"]
    value: Any = None


class AbortPart(BaseModel):
    """Marks a reply that stopped early (cancelled or aborted by the provider)."""

    type: Literal["abort"] = "abort"


class OtherPart(BaseModel):
    type: Literal["other"] = "other"
    value: Any = None


DataPart = Annotated[
    Union[TextPart, ThoughtPart, FilePart, ToolCallPart, ToolCallReturnPart, AbortPart, OtherPart],
    Field(discriminator="type"),
]

data_adapter = TypeAdapter(list[DataPart])


# ═══════════════════════════════════════════════════════════
# MODEL CONFIG & ARGS
# ═══════════════════════════════════════════════════════════


class ModelConfig(BaseModel):
    """Which service and model produced (or should produce) a message."""

    service: str = Field(..., description="Model service name (e.g. 'ollama')")
    model: str = Field(..., description="Model name within the service")
    args: dict[str, Any] = Field(default_factory=dict, description="Model arguments")


class ListArg(BaseModel):
    """An argument chosen from a fixed list of values."""

    type: Literal["list"] = "list"
    name: str
    values: list[str]
    default: str


class RangeArg(BaseModel):
    """A numeric argument bounded by a range."""

    type: Literal["range"] = "range"
    name: str
    min: float
    max: float
    step: float
    default: float


ModelArg = Annotated[Union[ListArg, RangeArg], Field(discriminator="type")]


class ModelDescriptor(BaseModel):
    """A model offered by a service."""

    name: str
    features: list[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════
# RESPONSE METADATA
# ═══════════════════════════════════════════════════════════


class OllamaMetadata(BaseModel):
    provider: Literal["ollama"] = "ollama"
    done_reason: str | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None
    total_duration: int | None = None


class OpenAIMetadata(BaseModel):
    provider: Literal["openai"] = "openai"
    response_id: str | None = None
    finish_reason: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class OpaqueMetadata(BaseModel):
    """Anything a provider returned that has no dedicated variant."""

    provider: Literal["opaque"] = "opaque"
    value: Any = None


ResponseMetadata = Annotated[
    Union[OllamaMetadata, OpenAIMetadata, OpaqueMetadata],
    Field(discriminator="provider"),
]

metadata_adapter = TypeAdapter(Optional[ResponseMetadata])

_KNOWN_PROVIDERS = {"ollama", "openai", "opaque"}


def coerce_metadata(value: Any) -> Any:
    """Wrap untagged or unknown metadata payloads in the opaque variant."""
    if value is None or isinstance(value, BaseModel):
        return value
    if isinstance(value, dict):
        if not value:
            return None
        if value.get("provider") in _KNOWN_PROVIDERS:
            return value
    return {"provider": "opaque", "value": value}


# ═══════════════════════════════════════════════════════════
# MESSAGE
# ═══════════════════════════════════════════════════════════


class Message(BaseModel):
    """
    One node of a chat's chain.

    ``previous_id`` links to the preceding message; the root has none.
    ``metadata`` is left out of regular listings.
    """

    id: str = Field(..., description="Unique message ID (msg_xxx)")
    chat_id: str = Field(..., description="Owning chat")
    folder_id: str = Field(..., description="Owning folder (denormalized)")
    user_id: str = Field(..., description="Owner user ID")
    author: Author
    config: ModelConfig
    data: list[DataPart] = Field(default_factory=list)
    metadata: ResponseMetadata | None = None
    previous_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("metadata", mode="before")
    @classmethod
    def _wrap_metadata(cls, value: Any) -> Any:
        return coerce_metadata(value)
