from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from signal_client.core.errors import DocumentNotFoundError, TransientStoreError
from signal_client.db.models import StoredDocument
from signal_client.db.session import build_engine, build_session_factory, drop_tables
from signal_client.store.base import SERVER_TIMESTAMP, ChangeType, Increment, Query
from signal_client.store.sql import SqlDocumentStore, decode_value, encode_value

NOW = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)


@pytest_asyncio.fixture()
async def sql_store() -> AsyncIterator[SqlDocumentStore]:
    store = SqlDocumentStore(build_engine("sqlite://"), clock=lambda: NOW)
    yield store
    await store.close()


def test_datetime_values_survive_json_encoding() -> None:
    value = {"createdAt": NOW, "nested": {"at": [NOW]}, "n": 1}

    encoded = encode_value(value)

    assert encoded["createdAt"] == {"__datetime__": NOW.isoformat()}
    assert decode_value(encoded) == value


@pytest.mark.asyncio
async def test_round_trip_with_transforms(sql_store: SqlDocumentStore) -> None:
    doc_id = await sql_store.create(
        "chats",
        {"participants": ["alice", "bob"], "unreadCount": {"bob": 0}, "createdAt": SERVER_TIMESTAMP},
    )

    await sql_store.update(
        "chats", doc_id, {"unreadCount.bob": Increment(2), "lastMessage": "hi"}
    )

    doc = await sql_store.get("chats", doc_id)
    assert doc is not None
    assert doc.data == {
        "participants": ["alice", "bob"],
        "unreadCount": {"bob": 2},
        "lastMessage": "hi",
        "createdAt": NOW,
    }


@pytest.mark.asyncio
async def test_rows_live_in_the_documents_table(sql_store: SqlDocumentStore) -> None:
    await sql_store.set("users", "alice", {"username": "alice"})

    session_factory = build_session_factory(sql_store._engine)
    with session_factory() as session:
        row = session.scalars(select(StoredDocument)).one()

    assert (row.collection, row.id) == ("users", "alice")
    assert row.data == {"username": "alice"}


@pytest.mark.asyncio
async def test_update_missing_document_raises(sql_store: SqlDocumentStore) -> None:
    with pytest.raises(DocumentNotFoundError):
        await sql_store.update("posts", "ghost", {"content": "x"})


@pytest.mark.asyncio
async def test_failed_batch_is_rolled_back(sql_store: SqlDocumentStore) -> None:
    batch = sql_store.batch()
    batch.set("likes", "alice_p1", {"userId": "alice"})
    batch.update("posts", "p1", {"likesCount": Increment(1)})

    with pytest.raises(DocumentNotFoundError):
        await sql_store.commit(batch)

    assert await sql_store.get("likes", "alice_p1") is None


@pytest.mark.asyncio
async def test_query_orders_and_pages(sql_store: SqlDocumentStore) -> None:
    for index in range(4):
        await sql_store.set(
            "posts",
            f"p{index}",
            {"visibility": "public", "createdAt": NOW + timedelta(minutes=index)},
        )
    await sql_store.set("posts", "private", {"visibility": "followers", "createdAt": NOW})
    query = (
        Query("posts")
        .where("visibility", "==", "public")
        .order("createdAt", descending=True)
        .take(3)
    )

    first = await sql_store.query(query)
    second = await sql_store.query(query.after(first.cursor))

    assert [doc.id for doc in first.documents] == ["p3", "p2", "p1"]
    assert [doc.id for doc in second.documents] == ["p0"]


@pytest.mark.asyncio
async def test_subscription_sees_committed_writes(sql_store: SqlDocumentStore) -> None:
    stream = await sql_store.subscribe(Query("posts"))
    batches = aiter(stream)
    assert await anext(batches) == []

    await sql_store.set("posts", "p1", {"content": "hello"})

    changes = await anext(batches)
    assert [(change.type, change.document.id) for change in changes] == [
        (ChangeType.ADDED, "p1")
    ]
    stream.close()
    await batches.aclose()


@pytest.mark.asyncio
async def test_missing_table_maps_to_transient_error(sql_store: SqlDocumentStore) -> None:
    drop_tables(sql_store._engine)

    with pytest.raises(TransientStoreError):
        await sql_store.get("posts", "p1")
