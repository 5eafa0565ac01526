"""Chat and message schemas."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from signal_client.schemas.base import DocumentModel


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class Chat(DocumentModel):
    """A one-to-one conversation between exactly two participants."""

    participants: list[str] = Field(default_factory=list)
    last_message: str | None = None
    last_message_at: datetime | None = None
    unread_count: dict[str, int] = Field(default_factory=dict)
    typing_status: dict[str, bool] = Field(default_factory=dict)
    created_at: datetime | None = None

    def partner_of(self, uid: str) -> str | None:
        """Return the other participant, or None if ``uid`` is not in the chat."""
        if uid not in self.participants:
            return None
        others = [participant for participant in self.participants if participant != uid]
        return others[0] if others else uid

    def unread_for(self, uid: str) -> int:
        return max(0, self.unread_count.get(uid, 0))

    def is_typing(self, uid: str) -> bool:
        return self.typing_status.get(uid, False)


class Message(DocumentModel):
    chat_id: str
    sender_id: str
    content: str = ""
    media_url: str | None = Field(default=None, alias="mediaURL")
    status: MessageStatus = MessageStatus.SENT
    created_at: datetime | None = None
