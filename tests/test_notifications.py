import pytest

from signal_client.schemas.collections import NOTIFICATIONS
from signal_client.schemas.notification import NotificationType
from signal_client.services.notifications import NotificationInbox, NotificationService


@pytest.mark.asyncio
async def test_self_notifications_are_never_created(alice) -> None:
    service = NotificationService(alice)

    assert await service.notify("alice", NotificationType.LIKE, post_id="p1") is None
    assert await service.notify("", NotificationType.LIKE) is None


@pytest.mark.asyncio
async def test_notification_carries_sender_card(alice, bob) -> None:
    notification_id = await NotificationService(alice).notify(
        "bob", NotificationType.COMMENT, post_id="p1", comment_id="c1"
    )

    document = await bob.store.get(NOTIFICATIONS, notification_id)
    assert document.data["senderId"] == "alice"
    assert document.data["senderUsername"] == "alice"
    assert document.data["postId"] == "p1"
    assert document.data["commentId"] == "c1"
    assert document.data["read"] is False


@pytest.mark.asyncio
async def test_inbox_tracks_items_and_unread_count(alice, bob, carol) -> None:
    inbox = NotificationInbox(bob)
    assert await inbox.start()

    first = await NotificationService(alice).notify("bob", NotificationType.FOLLOW)
    second = await NotificationService(carol).notify("bob", NotificationType.LIKE, post_id="p")
    await NotificationService(alice).notify("carol", NotificationType.FOLLOW)
    await inbox.flush()

    assert [item.id for item in inbox.items()] == [second, first]
    assert inbox.unread_count == 2

    assert await inbox.mark_read(first)
    await inbox.flush()
    assert inbox.unread_count == 1

    assert await inbox.mark_all_read() == 1
    await inbox.flush()
    assert inbox.unread_count == 0
    assert all(item.read for item in inbox.items())
    inbox.stop()


@pytest.mark.asyncio
async def test_mark_all_read_with_nothing_pending(bob) -> None:
    assert await NotificationService(bob).mark_all_read() == 0
