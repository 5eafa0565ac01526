"""Service layer: feed assembly, listings and mutations against the backend."""

from signal_client.services.chat import ChatInbox, ChatRoom, ChatService
from signal_client.services.comments import CommentService, CommentThread
from signal_client.services.feed import FeedAssembler, FeedFilters, FeedTab
from signal_client.services.listings import ExploreFeed, ProfileFeed, ProfileTab, ReelsFeed
from signal_client.services.moderation import ModerationService
from signal_client.services.notifications import NotificationInbox, NotificationService
from signal_client.services.posts import PostEngagement, PostService
from signal_client.services.presence import PresenceHeartbeat
from signal_client.services.users import LiveProfile, ProfileService
from signal_client.services.visibility import is_visible

__all__ = [
    "ChatInbox",
    "ChatRoom",
    "ChatService",
    "CommentService",
    "CommentThread",
    "ExploreFeed",
    "FeedAssembler",
    "FeedFilters",
    "FeedTab",
    "LiveProfile",
    "ModerationService",
    "NotificationInbox",
    "NotificationService",
    "PostEngagement",
    "PostService",
    "PresenceHeartbeat",
    "ProfileFeed",
    "ProfileService",
    "ProfileTab",
    "ReelsFeed",
    "is_visible",
]
