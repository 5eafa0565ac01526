"""Notifications: creation, the live inbox and read tracking."""

from __future__ import annotations

import logging

from signal_client.context import ClientContext
from signal_client.core.errors import StoreError
from signal_client.realtime.reconciler import Reconciler
from signal_client.schemas.collections import NOTIFICATIONS
from signal_client.schemas.notification import Notification, NotificationType
from signal_client.services.base import AuthorCard, Service
from signal_client.store.base import SERVER_TIMESTAMP, Query

logger = logging.getLogger(__name__)


class NotificationService(Service):
    """Creates notifications and updates their read flag."""

    async def notify(
        self,
        recipient_id: str,
        type: NotificationType,
        *,
        post_id: str | None = None,
        comment_id: str | None = None,
        sender: AuthorCard | None = None,
    ) -> str | None:
        """Create a notification from the viewer to ``recipient_id``.

        Self-notifications are never created. Returns the notification id, or
        None when nothing was written.
        """
        sender = sender or await self.author_card()
        if not recipient_id or recipient_id == sender.uid:
            return None
        data = {
            "recipientId": recipient_id,
            "senderId": sender.uid,
            "senderUsername": sender.username,
            "senderPhotoURL": sender.photo_url,
            "type": NotificationType(type).value,
            "read": False,
            "createdAt": SERVER_TIMESTAMP,
        }
        if post_id:
            data["postId"] = post_id
        if comment_id:
            data["commentId"] = comment_id
        try:
            return await self.store.create(NOTIFICATIONS, data)
        except StoreError as exc:
            logger.error("Failed to notify %s (%s): %s", recipient_id, data["type"], exc)
            return None

    async def mark_read(self, notification_id: str) -> bool:
        try:
            await self.store.update(NOTIFICATIONS, notification_id, {"read": True})
        except StoreError as exc:
            logger.error("Failed to mark notification %s read: %s", notification_id, exc)
            return False
        return True

    async def mark_all_read(self, notifications: list[Notification] | None = None) -> int:
        """Mark every unread notification of the viewer read in one batch.

        Args:
            notifications: Already loaded notifications; when omitted the
                viewer's unread notifications are queried.

        Returns:
            The number of notifications updated; 0 on failure.
        """
        viewer = self.viewer()
        try:
            if notifications is None:
                page = await self.store.query(
                    Query(NOTIFICATIONS)
                    .where("recipientId", "==", viewer.uid)
                    .where("read", "==", False)
                )
                unread_ids = [doc.id for doc in page.documents]
            else:
                unread_ids = [item.id for item in notifications if not item.read]
            if not unread_ids:
                return 0
            batch = self.store.batch()
            for notification_id in unread_ids:
                batch.update(NOTIFICATIONS, notification_id, {"read": True})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to mark notifications read: %s", exc)
            return 0
        return len(unread_ids)


class NotificationInbox:
    """Live inbox of the viewer's newest notifications plus the unread count."""

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        self.service = NotificationService(context)
        self._inbox: Reconciler[Notification] | None = None
        self._unread: Reconciler[str] | None = None

    async def start(self) -> bool:
        uid = self.context.require_viewer().uid
        self._inbox = Reconciler(
            self.context,
            Query(NOTIFICATIONS)
            .where("recipientId", "==", uid)
            .order("createdAt", descending=True)
            .take(self.context.settings.notification_window),
            Notification.from_document,
            name="notifications",
        )
        self._unread = Reconciler(
            self.context,
            Query(NOTIFICATIONS).where("recipientId", "==", uid).where("read", "==", False),
            lambda doc: doc.id,
            name="notifications-unread",
        )
        try:
            await self._inbox.start()
            await self._unread.start()
        except StoreError as exc:
            logger.warning("Notification subscriptions failed to open: %s", exc)
            return False
        return True

    @property
    def last_error(self) -> BaseException | None:
        for reconciler in (self._inbox, self._unread):
            if reconciler is not None and reconciler.error is not None:
                return reconciler.error
        return None

    def items(self) -> list[Notification]:
        if self._inbox is None:
            return []
        return sorted(
            self._inbox.items(),
            key=lambda item: item.created_at.timestamp() if item.created_at else 0.0,
            reverse=True,
        )

    @property
    def unread_count(self) -> int:
        return len(self._unread.collection) if self._unread is not None else 0

    async def mark_read(self, notification_id: str) -> bool:
        return await self.service.mark_read(notification_id)

    async def mark_all_read(self) -> int:
        return await self.service.mark_all_read()

    async def flush(self) -> None:
        for reconciler in (self._inbox, self._unread):
            if reconciler is not None:
                await reconciler.flush()

    def stop(self) -> None:
        for reconciler in (self._inbox, self._unread):
            if reconciler is not None:
                reconciler.stop()
