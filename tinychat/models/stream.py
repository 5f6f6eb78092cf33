"""
Streaming deltas and reply snapshots.

A model service yields data parts (thought, text, file, abort) followed by an
optional StreamEnd carrying response metadata.
"""

from typing import Union

from pydantic import BaseModel, Field, field_validator

from tinychat.models.message import (
    AbortPart,
    DataPart,
    FilePart,
    ResponseMetadata,
    TextPart,
    ThoughtPart,
    coerce_metadata,
)


class StreamEnd(BaseModel):
    """End-of-stream marker."""

    metadata: ResponseMetadata | None = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _wrap_metadata(cls, value):
        return coerce_metadata(value)


Delta = Union[ThoughtPart, TextPart, FilePart, AbortPart, StreamEnd]


class ReplySnapshot(BaseModel):
    """What observers see of a reply while it streams."""

    message_id: str
    chat_id: str
    data: list[DataPart] = Field(default_factory=list)
    thinking: bool = False
    generating: bool = False
    done: bool = False
    cancelled: bool = False
