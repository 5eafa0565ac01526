"""Moderator actions and community flagging."""

from __future__ import annotations

import logging

from signal_client.core.errors import PermissionDeniedError, StoreError
from signal_client.schemas.collections import COMMENTS, POSTS, USERS
from signal_client.schemas.comment import ModerationStatus
from signal_client.schemas.user import UserRole
from signal_client.services.base import Service
from signal_client.store.base import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)

STAFF_ROLES = {UserRole.MODERATOR.value, UserRole.ADMIN.value}


class ModerationService(Service):
    """Unpublish posts, hide comments and flag comments.

    Listings re-evaluate visibility on every read, so moderated content
    disappears from the feed as soon as the modified document arrives.
    """

    async def is_staff(self) -> bool:
        uid = self.viewer().uid
        try:
            profile = await self.store.get(USERS, uid)
        except StoreError as exc:
            logger.warning("Failed to load role of %s: %s", uid, exc)
            return False
        return profile is not None and profile.get("role") in STAFF_ROLES

    async def _require_staff(self) -> None:
        if not await self.is_staff():
            raise PermissionDeniedError("Moderator or admin role required")

    async def unpublish_post(self, post_id: str) -> bool:
        """Withdraw a post from every public listing.

        Raises:
            PermissionDeniedError: If the viewer is not a moderator or admin.
        """
        await self._require_staff()
        try:
            await self.store.update(
                POSTS,
                post_id,
                {"isPublished": False, "scheduledAt": None, "updatedAt": SERVER_TIMESTAMP},
            )
        except StoreError as exc:
            logger.error("Failed to unpublish post %s: %s", post_id, exc)
            return False
        logger.info("Post %s unpublished by %s", post_id, self.viewer().uid)
        return True

    async def set_comment_status(self, comment_id: str, status: ModerationStatus) -> bool:
        """Set a comment's moderation status (staff only)."""
        await self._require_staff()
        return await self._update_comment(comment_id, ModerationStatus(status))

    async def hide_comment(self, comment_id: str) -> bool:
        return await self.set_comment_status(comment_id, ModerationStatus.HIDDEN)

    async def flag_comment(self, comment_id: str) -> bool:
        """Report a comment for review; open to any signed-in user."""
        self.viewer()
        try:
            document = await self.store.get(COMMENTS, comment_id)
        except StoreError as exc:
            logger.error("Failed to load comment %s: %s", comment_id, exc)
            return False
        if document is None:
            return False
        if document.get("moderationStatus") == ModerationStatus.HIDDEN.value:
            return False
        return await self._update_comment(comment_id, ModerationStatus.FLAGGED)

    async def _update_comment(self, comment_id: str, status: ModerationStatus) -> bool:
        try:
            await self.store.update(COMMENTS, comment_id, {"moderationStatus": status.value})
        except StoreError as exc:
            logger.error("Failed to set comment %s to %s: %s", comment_id, status.value, exc)
            return False
        return True
