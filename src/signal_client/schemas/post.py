"""Post schema."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from signal_client.schemas.base import DocumentModel


class PostType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    REEL = "reel"
    ARTICLE = "article"


VISUAL_TYPES = frozenset({PostType.IMAGE, PostType.VIDEO, PostType.REEL})


class Visibility(str, Enum):
    PUBLIC = "public"
    FOLLOWERS = "followers"


class Post(DocumentModel):
    """A post in the ``posts`` collection."""

    author_id: str
    author_username: str = ""
    author_photo_url: str = Field(default="", alias="authorPhotoURL")
    type: PostType = PostType.TEXT
    content: str = ""
    title: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    media_url: str | None = Field(default=None, alias="mediaURL")
    thumbnail_url: str | None = Field(default=None, alias="thumbnailURL")
    likes_count: int = 0
    comments_count: int = 0
    views_count: int = 0
    visibility: Visibility = Visibility.PUBLIC
    is_published: bool = False
    scheduled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
