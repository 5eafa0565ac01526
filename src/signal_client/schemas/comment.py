"""Comment schema."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from signal_client.schemas.base import DocumentModel


class ModerationStatus(str, Enum):
    CLEAN = "clean"
    FLAGGED = "flagged"
    HIDDEN = "hidden"


class Comment(DocumentModel):
    """A root comment (``parent_id`` is None) or a reply to one."""

    post_id: str
    parent_id: str | None = None
    author_id: str
    author_username: str = ""
    author_photo_url: str = Field(default="", alias="authorPhotoURL")
    content: str = ""
    likes_count: int = 0
    reply_count: int = 0
    moderation_status: ModerationStatus = ModerationStatus.CLEAN
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None
