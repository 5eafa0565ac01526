"""Post creation, editing and engagement."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from signal_client.context import ClientContext
from signal_client.core.clock import ensure_aware, utcnow
from signal_client.core.errors import EmptyContentError, NotOwnerError, StoreError
from signal_client.realtime.optimistic import OptimisticCounter
from signal_client.schemas.collections import LIKES, POSTS, SAVED_POSTS, USERS, relation_id
from signal_client.schemas.notification import NotificationType
from signal_client.schemas.post import Post, PostType, Visibility
from signal_client.services.base import AuthorCard, Service
from signal_client.services.mentions import extract_mentions
from signal_client.services.notifications import NotificationService
from signal_client.services.ranking import normalize_tags
from signal_client.services.users import ProfileService
from signal_client.storage.blobs import Upload
from signal_client.store.base import SERVER_TIMESTAMP, Increment

logger = logging.getLogger(__name__)

MEDIA_FOLDER = "posts"


class PostService(Service):
    """Mutations on posts and their engagement relations."""

    def __init__(self, context: ClientContext) -> None:
        super().__init__(context)
        self.notifications = NotificationService(context)
        self.profiles = ProfileService(context)

    async def get(self, post_id: str) -> Post | None:
        try:
            document = await self.store.get(POSTS, post_id)
        except StoreError as exc:
            logger.warning("Failed to load post %s: %s", post_id, exc)
            return None
        return Post.from_document(document) if document is not None else None

    async def create_post(
        self,
        content: str = "",
        *,
        type: PostType = PostType.TEXT,
        title: str | None = None,
        category: str | None = None,
        tags: Iterable[str] = (),
        visibility: Visibility = Visibility.PUBLIC,
        scheduled_at: datetime | None = None,
        media: Upload | None = None,
        thumbnail_url: str | None = None,
    ) -> str | None:
        """Publish (or schedule) a post.

        Args:
            content: Post body.
            type: Post kind; ``title`` is only stored for articles.
            title: Article headline.
            category: Standard category used by the explore grid.
            tags: Topic tags; ``#`` markers are stripped and duplicates dropped.
            visibility: Audience of the post.
            scheduled_at: Future publication time. A time in the past
                publishes immediately.
            media: Optional file uploaded before the post is written.
            thumbnail_url: Preview image for video content.

        Returns:
            The new post id, or None if the backend rejected a write.

        Raises:
            EmptyContentError: If there is neither content nor media.
        """
        content = content.strip()
        if not content and media is None:
            raise EmptyContentError("A post needs content or media")
        author = await self.author_card()
        scheduled_at = ensure_aware(scheduled_at) if scheduled_at else None
        is_future = scheduled_at is not None and scheduled_at > utcnow()

        try:
            media_url = await self.upload(MEDIA_FOLDER, media) if media is not None else ""
            data = {
                "authorId": author.uid,
                "authorUsername": author.username,
                "authorPhotoURL": author.photo_url,
                "type": PostType(type).value,
                "content": content,
                "category": category,
                "tags": normalize_tags(tags),
                "mediaURL": media_url,
                "thumbnailURL": thumbnail_url,
                "likesCount": 0,
                "commentsCount": 0,
                "viewsCount": 0,
                "visibility": Visibility(visibility).value,
                "isPublished": not is_future,
                "scheduledAt": scheduled_at,
                "createdAt": SERVER_TIMESTAMP,
            }
            if type == PostType.ARTICLE and title:
                data["title"] = title
            post_id = await self.store.create(POSTS, data)
        except StoreError as exc:
            logger.error("Failed to create post: %s", exc)
            return None

        await self._bump_author(author.uid, "postsCount", 1)
        await self.notify_mentions(content, author, post_id=post_id)
        return post_id

    async def _bump_author(self, uid: str, field: str, delta: int) -> None:
        try:
            await self.store.increment(USERS, uid, field, delta)
        except StoreError as exc:
            logger.warning("Failed to adjust %s for %s: %s", field, uid, exc)

    async def notify_mentions(
        self,
        text: str,
        sender: AuthorCard,
        *,
        post_id: str | None = None,
        comment_id: str | None = None,
    ) -> int:
        """Send a mention notification to every resolvable ``@username`` in ``text``."""
        sent = 0
        for username in extract_mentions(text):
            profile = await self.profiles.get_by_username(username)
            if profile is None:
                continue
            notification_id = await self.notifications.notify(
                profile.uid,
                NotificationType.MENTION,
                post_id=post_id,
                comment_id=comment_id,
                sender=sender,
            )
            if notification_id:
                sent += 1
        return sent

    async def _owned(self, post_id: str) -> Post | None:
        post = await self.get(post_id)
        if post is None:
            return None
        if post.author_id != self.viewer().uid:
            raise NotOwnerError(f"posts/{post_id} belongs to another user")
        return post

    async def edit_post(
        self, post_id: str, *, content: str | None = None, media: Upload | None = None
    ) -> bool:
        """Change the text and/or media of one of the viewer's posts."""
        post = await self._owned(post_id)
        if post is None:
            return False
        fields: dict[str, object] = {"updatedAt": SERVER_TIMESTAMP}
        if content is not None:
            content = content.strip()
            if not content and not post.media_url and media is None:
                raise EmptyContentError("A post needs content or media")
            fields["content"] = content
        try:
            if media is not None:
                fields["mediaURL"] = await self.upload(MEDIA_FOLDER, media)
            await self.store.update(POSTS, post_id, fields)
        except StoreError as exc:
            logger.error("Failed to edit post %s: %s", post_id, exc)
            return False
        return True

    async def delete_post(self, post_id: str) -> bool:
        post = await self._owned(post_id)
        if post is None:
            return False
        try:
            await self.store.delete(POSTS, post_id)
        except StoreError as exc:
            logger.error("Failed to delete post %s: %s", post_id, exc)
            return False
        await self._bump_author(post.author_id, "postsCount", -1)
        return True

    async def is_liked(self, post_id: str) -> bool:
        uid = self.viewer().uid
        try:
            return await self.store.get(LIKES, relation_id(uid, post_id)) is not None
        except StoreError as exc:
            logger.warning("Failed to read like state of %s: %s", post_id, exc)
            return False

    async def is_saved(self, post_id: str) -> bool:
        uid = self.viewer().uid
        try:
            return await self.store.get(SAVED_POSTS, relation_id(uid, post_id)) is not None
        except StoreError as exc:
            logger.warning("Failed to read save state of %s: %s", post_id, exc)
            return False

    async def like(self, post: Post) -> bool:
        """Like ``post``; returns False if it was already liked or the write failed."""
        viewer = self.viewer()
        like_id = relation_id(viewer.uid, post.id)
        try:
            if await self.store.get(LIKES, like_id) is not None:
                return False
            batch = self.store.batch()
            batch.set(
                LIKES,
                like_id,
                {"userId": viewer.uid, "postId": post.id, "createdAt": SERVER_TIMESTAMP},
            )
            batch.update(POSTS, post.id, {"likesCount": Increment(1)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to like post %s: %s", post.id, exc)
            return False

        await self._bump_author(post.author_id, "likesReceived", 1)
        await self.notifications.notify(post.author_id, NotificationType.LIKE, post_id=post.id)
        return True

    async def unlike(self, post: Post) -> bool:
        viewer = self.viewer()
        like_id = relation_id(viewer.uid, post.id)
        try:
            if await self.store.get(LIKES, like_id) is None:
                return False
            batch = self.store.batch()
            batch.delete(LIKES, like_id)
            batch.update(POSTS, post.id, {"likesCount": Increment(-1)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to unlike post %s: %s", post.id, exc)
            return False

        await self._bump_author(post.author_id, "likesReceived", -1)
        return True

    async def save(self, post: Post) -> bool:
        viewer = self.viewer()
        try:
            await self.store.set(
                SAVED_POSTS,
                relation_id(viewer.uid, post.id),
                {
                    "userId": viewer.uid,
                    "postId": post.id,
                    "authorId": post.author_id,
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
        except StoreError as exc:
            logger.error("Failed to save post %s: %s", post.id, exc)
            return False
        return True

    async def unsave(self, post: Post) -> bool:
        viewer = self.viewer()
        try:
            await self.store.delete(SAVED_POSTS, relation_id(viewer.uid, post.id))
        except StoreError as exc:
            logger.error("Failed to unsave post %s: %s", post.id, exc)
            return False
        return True

    async def toggle_save(self, post: Post) -> bool | None:
        """Flip the saved state; returns the new state, or None on failure."""
        if await self.is_saved(post.id):
            return False if await self.unsave(post) else None
        return True if await self.save(post) else None

    async def record_view(self, post: Post) -> bool:
        """Count one view of ``post`` for the post and its author."""
        try:
            await self.store.increment(POSTS, post.id, "viewsCount", 1)
        except StoreError as exc:
            logger.warning("Failed to record view of %s: %s", post.id, exc)
            return False
        await self._bump_author(post.author_id, "viewsReceived", 1)
        return True


class PostEngagement:
    """Per-post interaction state for a rendered post.

    Like and view counters are optimistic: local actions move them at once
    and :meth:`reconcile` adopts the server values from the next snapshot.
    """

    def __init__(self, context: ClientContext, post: Post, service: PostService | None = None) -> None:
        self.context = context
        self.service = service or PostService(context)
        self.post = post
        self.liked = False
        self.saved = False
        self.likes = OptimisticCounter(post.likes_count)
        self.views = OptimisticCounter(post.views_count)
        self._viewed = False
        self._view_task: asyncio.Task[bool] | None = None
        self._like_lock = asyncio.Lock()

    @property
    def viewed(self) -> bool:
        return self._viewed

    async def load(self) -> None:
        """Read the viewer's like and save markers."""
        self.liked = await self.service.is_liked(self.post.id)
        self.saved = await self.service.is_saved(self.post.id)

    def reconcile(self, post: Post) -> None:
        """Adopt a fresh snapshot of the post."""
        self.post = post
        self.likes.reconcile(post.likes_count)
        self.views.reconcile(post.views_count)

    async def toggle_like(self) -> bool:
        """Like or unlike; returns the resulting liked state."""
        async with self._like_lock:
            if self.liked:
                self.likes.apply(-1)
                if await self.service.unlike(self.post):
                    self.liked = False
                else:
                    self.likes.rollback(-1)
            else:
                self.likes.apply(1)
                if await self.service.like(self.post):
                    self.liked = True
                else:
                    self.likes.rollback(1)
            return self.liked

    async def toggle_save(self) -> bool:
        result = await self.service.toggle_save(self.post)
        if result is not None:
            self.saved = result
        return self.saved

    def schedule_view(self) -> asyncio.Task[bool] | None:
        """Count a view once the post has stayed on screen for the view delay.

        At most one view is recorded per rendered post.
        """
        if self._viewed or self.context.viewer is None:
            return None
        if self._view_task is None or self._view_task.done():
            self._view_task = asyncio.create_task(self._record_view_later())
        return self._view_task

    async def _record_view_later(self) -> bool:
        await asyncio.sleep(self.context.settings.view_delay_seconds)
        if self._viewed:
            return False
        recorded = await self.service.record_view(self.post)
        if recorded:
            self._viewed = True
            self.views.apply(1)
        return recorded

    def cancel_view(self) -> None:
        """Abandon a pending view (the post left the screen)."""
        if self._view_task is not None and not self._view_task.done():
            self._view_task.cancel()
        self._view_task = None
