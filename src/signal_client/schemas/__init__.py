"""Pydantic models for stored documents."""

from signal_client.schemas.base import DocumentModel
from signal_client.schemas.chat import Chat, Message, MessageStatus
from signal_client.schemas.comment import Comment, ModerationStatus
from signal_client.schemas.notification import Notification, NotificationType
from signal_client.schemas.post import VISUAL_TYPES, Post, PostType, Visibility
from signal_client.schemas.user import UserProfile, UserRole

__all__ = [
    "VISUAL_TYPES",
    "Chat",
    "Comment",
    "DocumentModel",
    "Message",
    "MessageStatus",
    "ModerationStatus",
    "Notification",
    "NotificationType",
    "Post",
    "PostType",
    "UserProfile",
    "UserRole",
    "Visibility",
]
