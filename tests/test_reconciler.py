import asyncio

import pytest

from signal_client.context import ClientContext
from signal_client.realtime.optimistic import OptimisticCounter
from signal_client.realtime.reconciler import LiveCollection, Reconciler
from signal_client.store.base import Change, ChangeType, Document, Query


def _parse(document: Document) -> dict:
    return {"id": document.id, **document.data}


def _change(kind: ChangeType, doc_id: str, **data) -> Change:
    return Change(kind, Document(doc_id, data))


def test_live_collection_is_idempotent() -> None:
    collection = LiveCollection(_parse)

    assert collection.apply(_change(ChangeType.ADDED, "a", n=1))
    assert not collection.apply(_change(ChangeType.ADDED, "a", n=1))
    assert not collection.apply(_change(ChangeType.REMOVED, "ghost"))

    assert collection.ids() == ["a"]


def test_live_collection_prepends_new_ids_and_modifies_in_place() -> None:
    collection = LiveCollection(_parse)
    collection.apply_batch(
        [_change(ChangeType.ADDED, "a", n=1), _change(ChangeType.ADDED, "b", n=2)]
    )

    collection.apply(_change(ChangeType.MODIFIED, "a", n=10))

    assert collection.ids() == ["b", "a"]
    assert collection.get("a")["n"] == 10


def test_extend_appends_and_skips_known_ids() -> None:
    collection = LiveCollection(_parse)
    collection.apply(_change(ChangeType.ADDED, "live"))

    added = collection.extend([Document("live", {}), Document("page", {})])

    assert added == 1
    assert collection.ids() == ["live", "page"]


def test_optimistic_counter() -> None:
    counter = OptimisticCounter(server_value=4)

    assert counter.apply(1) == 5
    assert counter.rollback(1) == 4
    counter.apply(-10)
    assert counter.value == 0
    assert counter.reconcile(7) == 7
    assert counter.pending == 0


@pytest.mark.asyncio
async def test_reconciler_follows_the_store(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)
    await store.set("posts", "a", {"n": 1})
    reconciler = Reconciler(context, Query("posts"), _parse)

    await reconciler.start()
    await reconciler.flush()
    assert [item["id"] for item in reconciler.items()] == ["a"]

    await store.set("posts", "b", {"n": 2})
    await store.delete("posts", "a")
    await reconciler.flush()
    assert [item["id"] for item in reconciler.items()] == ["b"]

    await context.close()


@pytest.mark.asyncio
async def test_cancelled_subscription_no_longer_mutates_state(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)
    reconciler = Reconciler(context, Query("posts"), _parse)
    await reconciler.start()
    await reconciler.flush()

    reconciler.stop()
    await store.set("posts", "late", {"n": 1})
    await asyncio.sleep(0)

    assert reconciler.items() == []
    assert not reconciler.active
    await context.close()


@pytest.mark.asyncio
async def test_restart_merges_the_fresh_initial_batch(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)
    await store.set("posts", "a", {"n": 1})
    reconciler = Reconciler(context, Query("posts"), _parse)
    await reconciler.start()
    await reconciler.flush()

    await reconciler.restart()
    await reconciler.flush()

    assert [item["id"] for item in reconciler.items()] == ["a"]
    await context.close()


@pytest.mark.asyncio
async def test_handler_errors_stop_the_subscription_and_are_recorded(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)

    def explode(changes):
        raise RuntimeError("bad batch")

    subscription = await context.subscribe(Query("posts"), explode, name="exploding")
    await subscription.wait_closed()

    assert isinstance(subscription.error, RuntimeError)
    assert not subscription.active
    # the store keeps working for everyone else
    await store.set("posts", "a", {})
    assert await store.get("posts", "a") is not None
    await context.close()


@pytest.mark.asyncio
async def test_closing_the_context_cancels_subscriptions(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)
    first = await context.subscribe(Query("posts"), lambda changes: None)
    second = await context.subscribe(Query("users"), lambda changes: None)

    await context.close()

    assert first.cancelled and second.cancelled
    assert context.subscriptions == []


def test_rapid_remove_and_readd_leaves_at_most_one_copy() -> None:
    collection = LiveCollection(_parse)
    sequence = [ChangeType.ADDED, ChangeType.REMOVED, ChangeType.ADDED, ChangeType.ADDED]

    for kind in sequence:
        collection.apply(_change(kind, "a"))
    assert collection.ids() == ["a"]

    collection.apply_batch([_change(ChangeType.REMOVED, "a"), _change(ChangeType.REMOVED, "a")])
    assert collection.ids() == []


@pytest.mark.asyncio
async def test_context_forgets_cancelled_subscriptions(store, test_settings) -> None:
    context = ClientContext(store=store, settings=test_settings)
    for _ in range(3):
        subscription = await context.subscribe(Query("comments"), lambda changes: None)
        subscription.cancel()
        await subscription.wait_closed()

    latest = await context.subscribe(Query("posts"), lambda changes: None)

    assert context._subscriptions == [latest]
    await context.close()
