import pytest

from signal_client.core.errors import PermissionDeniedError
from signal_client.schemas.collections import COMMENTS, POSTS, USERS
from signal_client.schemas.comment import ModerationStatus
from signal_client.schemas.post import Post
from signal_client.schemas.user import UserRole
from signal_client.services.comments import CommentService, CommentThread
from signal_client.services.moderation import ModerationService
from signal_client.services.posts import PostService
from signal_client.services.visibility import is_visible


async def _promote(context, uid: str, role: UserRole = UserRole.MODERATOR) -> None:
    await context.store.update(USERS, uid, {"role": role.value})


@pytest.mark.asyncio
async def test_regular_users_cannot_unpublish(alice, bob) -> None:
    post_id = await PostService(bob).create_post("spam?")

    with pytest.raises(PermissionDeniedError):
        await ModerationService(alice).unpublish_post(post_id)


@pytest.mark.asyncio
async def test_unpublished_post_is_hidden_from_everyone_but_its_author(alice, bob) -> None:
    await _promote(alice, "alice", UserRole.ADMIN)
    post_id = await PostService(bob).create_post("spam")

    assert await ModerationService(alice).is_staff()
    assert await ModerationService(alice).unpublish_post(post_id)

    post = Post.from_document(await bob.store.get(POSTS, post_id))
    assert not post.is_published
    assert post.scheduled_at is None
    assert not is_visible(post, "alice")
    assert is_visible(post, "bob")


@pytest.mark.asyncio
async def test_hidden_comment_leaves_the_thread(alice, bob, carol) -> None:
    await _promote(carol, "carol")
    post_id = await PostService(alice).create_post("topic")
    comment_id = await CommentService(bob).add_comment(post_id, "rude")
    thread = CommentThread(alice, post_id)
    await thread.start()
    await thread.flush()
    assert [comment.id for comment in thread.comments()] == [comment_id]

    with pytest.raises(PermissionDeniedError):
        await ModerationService(bob).hide_comment(comment_id)
    assert await ModerationService(carol).hide_comment(comment_id)
    await thread.flush()

    assert thread.comments() == []
    thread.stop()


@pytest.mark.asyncio
async def test_any_user_may_flag_but_hidden_stays_hidden(alice, bob, carol) -> None:
    await _promote(carol, "carol")
    post_id = await PostService(alice).create_post("topic")
    comment_id = await CommentService(bob).add_comment(post_id, "questionable")

    assert await CommentService(alice).flag(comment_id)
    status = (await alice.store.get(COMMENTS, comment_id)).get("moderationStatus")
    assert status == ModerationStatus.FLAGGED.value

    await ModerationService(carol).hide_comment(comment_id)
    assert not await CommentService(alice).flag(comment_id)
    status = (await alice.store.get(COMMENTS, comment_id)).get("moderationStatus")
    assert status == ModerationStatus.HIDDEN.value


@pytest.mark.asyncio
async def test_flagging_a_missing_comment(alice) -> None:
    assert not await ModerationService(alice).flag_comment("ghost")
