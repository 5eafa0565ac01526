"""Comments, one level of replies, and their live threads."""

from __future__ import annotations

import logging
import uuid

from signal_client.context import ClientContext
from signal_client.core.clock import ensure_aware
from signal_client.core.errors import (
    EmptyContentError,
    InvalidReplyError,
    NotOwnerError,
    StoreError,
)
from signal_client.realtime.reconciler import Reconciler
from signal_client.schemas.collections import COMMENT_LIKES, COMMENTS, POSTS, relation_id
from signal_client.schemas.comment import Comment, ModerationStatus
from signal_client.schemas.notification import NotificationType
from signal_client.services.base import AuthorCard, Service
from signal_client.services.moderation import ModerationService
from signal_client.services.notifications import NotificationService
from signal_client.services.posts import PostService
from signal_client.store.base import SERVER_TIMESTAMP, Increment, Query

logger = logging.getLogger(__name__)


def _created(comment: Comment) -> float:
    return ensure_aware(comment.created_at).timestamp() if comment.created_at else float("inf")


def visible_to(comment: Comment, viewer_id: str | None) -> bool:
    """Hidden comments are only shown to their author."""
    return comment.moderation_status != ModerationStatus.HIDDEN or comment.author_id == viewer_id


class CommentService(Service):
    """Comment and reply mutations."""

    def __init__(self, context: ClientContext) -> None:
        super().__init__(context)
        self.notifications = NotificationService(context)
        self.posts = PostService(context)
        self.moderation = ModerationService(context)

    async def get(self, comment_id: str) -> Comment | None:
        try:
            document = await self.store.get(COMMENTS, comment_id)
        except StoreError as exc:
            logger.warning("Failed to load comment %s: %s", comment_id, exc)
            return None
        return Comment.from_document(document) if document is not None else None

    def _comment_data(
        self, post_id: str, parent_id: str | None, content: str, author: AuthorCard
    ) -> dict[str, object]:
        return {
            "postId": post_id,
            "parentId": parent_id,
            "authorId": author.uid,
            "authorUsername": author.username,
            "authorPhotoURL": author.photo_url,
            "content": content,
            "likesCount": 0,
            "replyCount": 0,
            "moderationStatus": ModerationStatus.CLEAN.value,
            "createdAt": SERVER_TIMESTAMP,
        }

    async def add_comment(self, post_id: str, content: str) -> str | None:
        """Add a root comment to a post and notify the post author.

        Raises:
            EmptyContentError: If ``content`` is blank.
        """
        content = content.strip()
        if not content:
            raise EmptyContentError("A comment needs content")
        author = await self.author_card()
        post = await self.posts.get(post_id)
        if post is None:
            logger.warning("Cannot comment on missing post %s", post_id)
            return None

        comment_id = uuid.uuid4().hex
        batch = self.store.batch()
        batch.set(COMMENTS, comment_id, self._comment_data(post_id, None, content, author))
        batch.update(POSTS, post_id, {"commentsCount": Increment(1)})
        try:
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to comment on %s: %s", post_id, exc)
            return None

        await self.notifications.notify(
            post.author_id,
            NotificationType.COMMENT,
            post_id=post_id,
            comment_id=comment_id,
            sender=author,
        )
        await self.posts.notify_mentions(content, author, post_id=post_id, comment_id=comment_id)
        return comment_id

    async def reply(self, parent_id: str, content: str) -> str | None:
        """Reply to a root comment.

        Raises:
            EmptyContentError: If ``content`` is blank.
            InvalidReplyError: If the parent is itself a reply.
        """
        content = content.strip()
        if not content:
            raise EmptyContentError("A reply needs content")
        parent = await self.get(parent_id)
        if parent is None:
            logger.warning("Cannot reply to missing comment %s", parent_id)
            return None
        if parent.is_reply:
            raise InvalidReplyError("Replies can only be made to top-level comments")
        author = await self.author_card()

        reply_id = uuid.uuid4().hex
        batch = self.store.batch()
        batch.set(
            COMMENTS, reply_id, self._comment_data(parent.post_id, parent.id, content, author)
        )
        batch.update(COMMENTS, parent.id, {"replyCount": Increment(1)})
        batch.update(POSTS, parent.post_id, {"commentsCount": Increment(1)})
        try:
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to reply to %s: %s", parent_id, exc)
            return None

        await self.notifications.notify(
            parent.author_id,
            NotificationType.REPLY,
            post_id=parent.post_id,
            comment_id=reply_id,
            sender=author,
        )
        await self.posts.notify_mentions(
            content, author, post_id=parent.post_id, comment_id=reply_id
        )
        return reply_id

    async def _owned(self, comment_id: str) -> Comment | None:
        comment = await self.get(comment_id)
        if comment is None:
            return None
        if comment.author_id != self.viewer().uid:
            raise NotOwnerError(f"comments/{comment_id} belongs to another user")
        return comment

    async def edit(self, comment_id: str, content: str) -> bool:
        content = content.strip()
        if not content:
            raise EmptyContentError("A comment needs content")
        comment = await self._owned(comment_id)
        if comment is None:
            return False
        if content == comment.content:
            return False
        try:
            await self.store.update(
                COMMENTS, comment_id, {"content": content, "updatedAt": SERVER_TIMESTAMP}
            )
        except StoreError as exc:
            logger.error("Failed to edit comment %s: %s", comment_id, exc)
            return False
        return True

    async def delete(self, comment_id: str) -> bool:
        """Delete one of the viewer's comments and roll back the counters.

        Deleting a root comment also deletes its replies.
        """
        comment = await self._owned(comment_id)
        if comment is None:
            return False
        try:
            batch = self.store.batch()
            removed = 1
            batch.delete(COMMENTS, comment.id)
            if comment.is_reply:
                parent = await self.store.get(COMMENTS, comment.parent_id)
                if parent is not None:
                    batch.update(COMMENTS, parent.id, {"replyCount": Increment(-1)})
            else:
                replies = await self.store.query(
                    Query(COMMENTS).where("parentId", "==", comment.id)
                )
                for reply in replies.documents:
                    batch.delete(COMMENTS, reply.id)
                    removed += 1
            if await self.store.get(POSTS, comment.post_id) is not None:
                batch.update(POSTS, comment.post_id, {"commentsCount": Increment(-removed)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to delete comment %s: %s", comment_id, exc)
            return False
        return True

    async def is_liked(self, comment_id: str) -> bool:
        uid = self.viewer().uid
        try:
            return await self.store.get(COMMENT_LIKES, relation_id(uid, comment_id)) is not None
        except StoreError as exc:
            logger.warning("Failed to read comment like state: %s", exc)
            return False

    async def toggle_like(self, comment_id: str) -> bool | None:
        """Like or unlike a comment; returns the new state, or None on failure."""
        uid = self.viewer().uid
        like_id = relation_id(uid, comment_id)
        try:
            liked = await self.store.get(COMMENT_LIKES, like_id) is not None
            batch = self.store.batch()
            if liked:
                batch.delete(COMMENT_LIKES, like_id)
                batch.update(COMMENTS, comment_id, {"likesCount": Increment(-1)})
            else:
                batch.set(
                    COMMENT_LIKES,
                    like_id,
                    {"userId": uid, "commentId": comment_id, "createdAt": SERVER_TIMESTAMP},
                )
                batch.update(COMMENTS, comment_id, {"likesCount": Increment(1)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to toggle like on comment %s: %s", comment_id, exc)
            return None
        return not liked

    async def flag(self, comment_id: str) -> bool:
        return await self.moderation.flag_comment(comment_id)


class CommentThread:
    """Live comments of one post.

    The top-level list holds the newest root comments. Reply lists are opened
    per root comment and ordered oldest first.
    """

    def __init__(self, context: ClientContext, post_id: str) -> None:
        self.context = context
        self.post_id = post_id
        self.service = CommentService(context)
        self._roots: Reconciler[Comment] = Reconciler(
            context,
            Query(COMMENTS)
            .where("postId", "==", post_id)
            .where("parentId", "==", None)
            .order("createdAt", descending=True)
            .take(context.settings.comment_window),
            Comment.from_document,
            name=f"comments:{post_id}",
        )
        self._replies: dict[str, Reconciler[Comment]] = {}

    @property
    def last_error(self) -> BaseException | None:
        return self._roots.error

    async def start(self) -> bool:
        try:
            await self._roots.start()
        except StoreError as exc:
            logger.warning("Comment subscription for %s failed to open: %s", self.post_id, exc)
            return False
        return True

    def comments(self) -> list[Comment]:
        viewer_id = self.context.viewer_id
        roots = [
            comment
            for comment in self._roots.items()
            if not comment.is_reply and visible_to(comment, viewer_id)
        ]
        return sorted(roots, key=_created, reverse=True)

    async def open_replies(self, comment_id: str) -> bool:
        if comment_id in self._replies:
            return True
        reconciler: Reconciler[Comment] = Reconciler(
            self.context,
            Query(COMMENTS).where("parentId", "==", comment_id),
            Comment.from_document,
            name=f"replies:{comment_id}",
        )
        try:
            await reconciler.start()
        except StoreError as exc:
            logger.warning("Reply subscription for %s failed to open: %s", comment_id, exc)
            return False
        self._replies[comment_id] = reconciler
        return True

    def replies(self, comment_id: str) -> list[Comment]:
        reconciler = self._replies.get(comment_id)
        if reconciler is None:
            return []
        viewer_id = self.context.viewer_id
        return sorted(
            (reply for reply in reconciler.items() if visible_to(reply, viewer_id)),
            key=_created,
        )

    def close_replies(self, comment_id: str) -> None:
        reconciler = self._replies.pop(comment_id, None)
        if reconciler is not None:
            reconciler.stop()

    async def add_comment(self, content: str) -> str | None:
        return await self.service.add_comment(self.post_id, content)

    async def reply(self, parent_id: str, content: str) -> str | None:
        return await self.service.reply(parent_id, content)

    async def flush(self) -> None:
        await self._roots.flush()
        for reconciler in self._replies.values():
            await reconciler.flush()

    def stop(self) -> None:
        self._roots.stop()
        for comment_id in list(self._replies):
            self.close_replies(comment_id)
