import asyncio
from datetime import UTC, datetime

import pytest

from signal_client.core.errors import DocumentNotFoundError, StoreClosedError
from signal_client.store.base import SERVER_TIMESTAMP, ChangeType, Increment, Query
from signal_client.store.memory import MemoryDocumentStore

NOW = datetime(2024, 5, 1, tzinfo=UTC)


def _summary(changes):
    return [(change.type, change.document.id) for change in changes]


@pytest.mark.asyncio
async def test_create_get_update_delete() -> None:
    store = MemoryDocumentStore(clock=lambda: NOW)

    doc_id = await store.create("posts", {"content": "hi", "createdAt": SERVER_TIMESTAMP})
    doc = await store.get("posts", doc_id)
    assert doc is not None
    assert doc.data == {"content": "hi", "createdAt": NOW}

    await store.update("posts", doc_id, {"content": "edited"})
    doc = await store.get("posts", doc_id)
    assert doc.data["content"] == "edited"

    await store.delete("posts", doc_id)
    assert await store.get("posts", doc_id) is None
    # deleting twice is a no-op
    await store.delete("posts", doc_id)


@pytest.mark.asyncio
async def test_reads_return_copies(store) -> None:
    await store.set("chats", "c", {"unreadCount": {"bob": 1}})

    doc = await store.get("chats", "c")
    doc.data["unreadCount"]["bob"] = 99

    fresh = await store.get("chats", "c")
    assert fresh.data["unreadCount"]["bob"] == 1


@pytest.mark.asyncio
async def test_update_missing_document_raises(store) -> None:
    with pytest.raises(DocumentNotFoundError):
        await store.update("posts", "ghost", {"content": "x"})


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing(store) -> None:
    await store.set("users", "alice", {"followingCount": 0})
    batch = store.batch()
    batch.update("users", "alice", {"followingCount": Increment(1)})
    batch.update("users", "ghost", {"followersCount": Increment(1)})

    with pytest.raises(DocumentNotFoundError):
        await store.commit(batch)

    doc = await store.get("users", "alice")
    assert doc.data["followingCount"] == 0


@pytest.mark.asyncio
async def test_batch_sees_its_own_earlier_writes(store) -> None:
    batch = store.batch()
    batch.set("comments", "c1", {"replyCount": 0})
    batch.update("comments", "c1", {"replyCount": Increment(1)})

    await store.commit(batch)

    doc = await store.get("comments", "c1")
    assert doc.data["replyCount"] == 1


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(store) -> None:
    await store.set("posts", "p", {"likesCount": 0})

    await asyncio.gather(*(store.increment("posts", "p", "likesCount") for _ in range(10)))

    doc = await store.get("posts", "p")
    assert doc.data["likesCount"] == 10


@pytest.mark.asyncio
async def test_change_stream_reports_added_modified_removed(store) -> None:
    await store.set("posts", "a", {"n": 1})
    stream = await store.subscribe(Query("posts").order("n"))
    batches = aiter(stream)

    assert _summary(await anext(batches)) == [(ChangeType.ADDED, "a")]

    await store.set("posts", "b", {"n": 2})
    assert _summary(await anext(batches)) == [(ChangeType.ADDED, "b")]

    await store.update("posts", "a", {"n": 5})
    assert _summary(await anext(batches)) == [(ChangeType.MODIFIED, "a")]

    await store.delete("posts", "b")
    assert _summary(await anext(batches)) == [(ChangeType.REMOVED, "b")]

    stream.close()
    await batches.aclose()


@pytest.mark.asyncio
async def test_initial_batch_is_delivered_even_when_empty(store) -> None:
    stream = await store.subscribe(Query("posts"))
    batches = aiter(stream)

    assert await anext(batches) == []

    stream.close()
    await batches.aclose()


@pytest.mark.asyncio
async def test_limited_stream_removes_documents_pushed_out_of_the_window(store) -> None:
    await store.set("posts", "a", {"n": 1})
    await store.set("posts", "b", {"n": 2})
    stream = await store.subscribe(Query("posts").order("n", descending=True).take(2))
    batches = aiter(stream)
    assert _summary(await anext(batches)) == [(ChangeType.ADDED, "b"), (ChangeType.ADDED, "a")]

    await store.set("posts", "c", {"n": 3})

    assert _summary(await anext(batches)) == [(ChangeType.ADDED, "c"), (ChangeType.REMOVED, "a")]
    stream.close()
    await batches.aclose()


@pytest.mark.asyncio
async def test_closing_the_store_ends_streams_and_rejects_calls(store) -> None:
    stream = await store.subscribe(Query("posts"))
    batches = aiter(stream)
    await anext(batches)

    await store.close()

    with pytest.raises(StopAsyncIteration):
        await anext(batches)
    with pytest.raises(StoreClosedError):
        await store.get("posts", "a")
