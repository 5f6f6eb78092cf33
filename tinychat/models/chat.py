"""
Folder and chat models.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Chat(BaseModel):
    """
    A conversation: one chain of messages inside a folder.

    Temporary chats are never memorized or embedded and stay out of folder
    listings. Incognito chats get no long-term memory context and are never
    memorized.
    """

    id: str = Field(..., description="Unique chat ID (chat_xxx)")
    folder_id: str
    user_id: str
    title: str | None = None
    temporary: bool = False
    incognito: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    last_activity: datetime | None = Field(
        default=None, description="Latest message timestamp (listings only)"
    )


class Folder(BaseModel):
    """A group of chats; a folder forked from one chat keeps its title."""

    id: str = Field(..., description="Unique folder ID (fld_xxx)")
    user_id: str
    title: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    chats: list[Chat] = Field(default_factory=list)
