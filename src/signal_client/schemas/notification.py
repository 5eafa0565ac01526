"""Notification schema."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from signal_client.schemas.base import DocumentModel


class NotificationType(str, Enum):
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    REPLY = "reply"


class Notification(DocumentModel):
    recipient_id: str
    sender_id: str
    sender_username: str = ""
    sender_photo_url: str = Field(default="", alias="senderPhotoURL")
    type: NotificationType
    post_id: str | None = None
    comment_id: str | None = None
    read: bool = False
    created_at: datetime | None = None
