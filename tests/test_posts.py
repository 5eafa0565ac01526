import asyncio
from datetime import timedelta

import pytest

from signal_client.core.clock import utcnow
from signal_client.core.errors import EmptyContentError, NotOwnerError
from signal_client.schemas.collections import NOTIFICATIONS, POSTS, USERS
from signal_client.schemas.post import Post, PostType
from signal_client.services.posts import PostEngagement, PostService
from signal_client.storage.blobs import Upload
from signal_client.store.base import Query


async def _load(store, collection: str, document_id: str) -> dict:
    document = await store.get(collection, document_id)
    assert document is not None
    return dict(document.data)


async def _notifications(store, recipient_id: str) -> list[dict]:
    page = await store.query(Query(NOTIFICATIONS).where("recipientId", "==", recipient_id))
    return [dict(doc.data) for doc in page.documents]


@pytest.mark.asyncio
async def test_create_post_writes_denormalised_fields(alice) -> None:
    service = PostService(alice)

    post_id = await service.create_post(
        "  hello world  ",
        type=PostType.ARTICLE,
        title="Headline",
        category="Tech",
        tags=["#Python", "python", "AI"],
    )

    data = await _load(alice.store, POSTS, post_id)
    assert data["authorId"] == "alice"
    assert data["authorUsername"] == "alice"
    assert data["content"] == "hello world"
    assert data["title"] == "Headline"
    assert data["tags"] == ["Python", "AI"]
    assert data["isPublished"] is True
    assert data["likesCount"] == data["commentsCount"] == data["viewsCount"] == 0
    assert data["createdAt"] is not None
    assert (await _load(alice.store, USERS, "alice"))["postsCount"] == 1


@pytest.mark.asyncio
async def test_future_schedule_creates_unpublished_post(alice) -> None:
    scheduled = utcnow() + timedelta(days=1)

    post_id = await PostService(alice).create_post("soon", scheduled_at=scheduled)

    data = await _load(alice.store, POSTS, post_id)
    assert data["isPublished"] is False
    assert data["scheduledAt"] == scheduled


@pytest.mark.asyncio
async def test_empty_post_is_rejected(alice) -> None:
    with pytest.raises(EmptyContentError):
        await PostService(alice).create_post("   ")


@pytest.mark.asyncio
async def test_media_is_uploaded_under_the_author_folder(alice, blobs) -> None:
    upload = Upload("holiday pic.png", b"\x89PNG", "image/png")

    post_id = await PostService(alice).create_post(type=PostType.IMAGE, media=upload)

    data = await _load(alice.store, POSTS, post_id)
    [path] = blobs.blobs
    assert path.startswith("posts/alice/")
    assert path.endswith("_holiday_pic.png")
    assert data["mediaURL"] == f"memory://{path}"


@pytest.mark.asyncio
async def test_concurrent_likes_both_count(alice, bob, carol) -> None:
    post_id = await PostService(carol).create_post("like me")
    post = await PostService(carol).get(post_id)

    results = await asyncio.gather(PostService(alice).like(post), PostService(bob).like(post))

    assert results == [True, True]
    assert (await _load(carol.store, POSTS, post_id))["likesCount"] == 2
    assert (await _load(carol.store, USERS, "carol"))["likesReceived"] == 2
    likes = [item for item in await _notifications(carol.store, "carol") if item["type"] == "like"]
    assert sorted(item["senderId"] for item in likes) == ["alice", "bob"]


@pytest.mark.asyncio
async def test_like_is_once_per_user_and_unlike_reverts(alice, bob) -> None:
    post_id = await PostService(bob).create_post("hi")
    service = PostService(alice)
    post = await service.get(post_id)

    assert await service.like(post)
    assert not await service.like(post)
    assert await service.is_liked(post_id)

    assert await service.unlike(post)
    assert not await service.unlike(post)
    assert (await _load(alice.store, POSTS, post_id))["likesCount"] == 0


@pytest.mark.asyncio
async def test_liking_own_post_sends_no_notification(alice) -> None:
    service = PostService(alice)
    post = await service.get(await service.create_post("mine"))

    await service.like(post)

    assert await _notifications(alice.store, "alice") == []


@pytest.mark.asyncio
async def test_only_the_author_may_edit_or_delete(alice, bob) -> None:
    post_id = await PostService(alice).create_post("original")

    with pytest.raises(NotOwnerError):
        await PostService(bob).edit_post(post_id, content="hijacked")
    with pytest.raises(NotOwnerError):
        await PostService(bob).delete_post(post_id)

    assert await PostService(alice).edit_post(post_id, content="edited")
    assert (await _load(alice.store, POSTS, post_id))["content"] == "edited"

    assert await PostService(alice).delete_post(post_id)
    assert await alice.store.get(POSTS, post_id) is None
    assert (await _load(alice.store, USERS, "alice"))["postsCount"] == 0


@pytest.mark.asyncio
async def test_mentions_notify_existing_users(alice, bob) -> None:
    post_id = await PostService(alice).create_post("thanks @bob and @nobody")

    [mention] = await _notifications(alice.store, "bob")
    assert mention["type"] == "mention"
    assert mention["postId"] == post_id
    assert mention["senderUsername"] == "alice"


@pytest.mark.asyncio
async def test_toggle_save(alice, bob) -> None:
    service = PostService(alice)
    post = await service.get(await PostService(bob).create_post("keep"))

    assert await service.toggle_save(post) is True
    assert await service.is_saved(post.id)
    assert await service.toggle_save(post) is False
    assert not await service.is_saved(post.id)


@pytest.mark.asyncio
async def test_engagement_like_is_optimistic(alice, bob) -> None:
    post = await PostService(bob).get(await PostService(bob).create_post("hi"))
    engagement = PostEngagement(alice, post)

    assert await engagement.toggle_like() is True
    assert engagement.likes.value == 1

    fresh = await PostService(alice).get(post.id)
    engagement.reconcile(fresh)
    assert engagement.likes.value == 1

    assert await engagement.toggle_like() is False
    assert engagement.likes.value == 0


@pytest.mark.asyncio
async def test_engagement_rolls_back_failed_like(alice, bob, mocker) -> None:
    post = await PostService(bob).get(await PostService(bob).create_post("hi"))
    engagement = PostEngagement(alice, post)
    mocker.patch.object(engagement.service, "like", return_value=False)

    assert await engagement.toggle_like() is False
    assert engagement.likes.value == 0
    assert not engagement.liked


@pytest.mark.asyncio
async def test_view_is_recorded_once_after_the_delay(alice, bob) -> None:
    post = await PostService(bob).get(await PostService(bob).create_post("watch"))
    engagement = PostEngagement(alice, post)

    task = engagement.schedule_view()
    assert await task is True

    assert engagement.viewed
    assert engagement.schedule_view() is None
    assert (await _load(alice.store, POSTS, post.id))["viewsCount"] == 1
    assert (await _load(alice.store, USERS, "bob"))["viewsReceived"] == 1


@pytest.mark.asyncio
async def test_cancelled_view_is_not_recorded(alice, bob) -> None:
    post = await PostService(bob).get(await PostService(bob).create_post("skip"))
    engagement = PostEngagement(alice, post)

    engagement.schedule_view()
    engagement.cancel_view()
    await asyncio.sleep(0.05)

    assert (await _load(alice.store, POSTS, post.id))["viewsCount"] == 0
    assert not engagement.viewed


def test_post_model_defaults() -> None:
    post = Post(id="p", author_id="alice")

    assert post.type is PostType.TEXT
    assert not post.is_published
