"""User profile schema."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from signal_client.schemas.base import DocumentModel


class UserRole(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserProfile(DocumentModel):
    """Public profile stored in ``users`` under the account uid."""

    uid: str
    email: str = ""
    username: str
    display_name: str = ""
    photo_url: str = Field(default="", alias="photoURL")
    cover_url: str = Field(default="", alias="coverURL")
    bio: str = ""
    website: str = ""
    role: UserRole = UserRole.USER
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    likes_received: int = 0
    views_received: int = 0
    created_at: datetime | None = None
    is_online: bool = False
    last_active: datetime | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in {UserRole.MODERATOR, UserRole.ADMIN}
