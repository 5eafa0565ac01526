"""Idempotent application of change batches to local collections."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Generic, TypeVar

from signal_client.realtime.subscription import Subscription
from signal_client.store.base import Change, ChangeType, Document, Query

if TYPE_CHECKING:
    from signal_client.context import ClientContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveCollection(Generic[T]):
    """Ordered, id-keyed local cache of documents.

    ``added`` for a present id and ``removed`` for an absent id are no-ops, so
    overlapping sources (a page fetch and a live window) can be merged in any
    order without duplicates. New ids are prepended; ``modified`` replaces the
    entry in place.
    """

    def __init__(self, parse: Callable[[Document], T]) -> None:
        self._parse = parse
        self._order: list[str] = []
        self._items: dict[str, T] = {}
        self.version = 0

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self.items())

    def get(self, document_id: str) -> T | None:
        return self._items.get(document_id)

    def ids(self) -> list[str]:
        return list(self._order)

    def items(self) -> list[T]:
        return [self._items[document_id] for document_id in self._order]

    def apply(self, change: Change) -> bool:
        """Apply one change; return True if the collection changed."""
        document_id = change.document.id
        if change.type is ChangeType.REMOVED:
            if document_id not in self._items:
                return False
            del self._items[document_id]
            self._order.remove(document_id)
        elif change.type is ChangeType.ADDED and document_id in self._items:
            logger.debug("Ignoring duplicate add for %s", document_id)
            return False
        else:
            item = self._parse(change.document)
            if document_id not in self._items:
                self._order.insert(0, document_id)
            self._items[document_id] = item
        self.version += 1
        return True

    def apply_batch(self, changes: Iterable[Change]) -> bool:
        changed = False
        for change in changes:
            changed = self.apply(change) or changed
        return changed

    def extend(self, documents: Iterable[Document]) -> int:
        """Append page results, skipping ids already present; return the count added."""
        added = 0
        for document in documents:
            if document.id in self._items:
                continue
            self._items[document.id] = self._parse(document)
            self._order.append(document.id)
            added += 1
        if added:
            self.version += 1
        return added

    def replace(self, documents: Iterable[Document]) -> None:
        """Reset the collection to exactly ``documents``, in order."""
        self.clear()
        self.extend(documents)

    def discard(self, document_id: str) -> None:
        if document_id in self._items:
            del self._items[document_id]
            self._order.remove(document_id)
            self.version += 1

    def clear(self) -> None:
        self._order.clear()
        self._items.clear()
        self.version += 1


class Reconciler(Generic[T]):
    """Keeps a :class:`LiveCollection` in sync with one subscribed query."""

    def __init__(
        self,
        context: ClientContext,
        query: Query,
        parse: Callable[[Document], T],
        *,
        name: str = "",
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.context = context
        self.query = query
        self.collection: LiveCollection[T] = LiveCollection(parse)
        self.name = name or query.collection
        self._on_change = on_change
        self._subscription: Subscription | None = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def error(self) -> BaseException | None:
        return self._subscription.error if self._subscription is not None else None

    async def start(self) -> None:
        if self.active:
            return
        self._subscription = await self.context.subscribe(self.query, self._handle, self.name)

    def _handle(self, changes: list[Change]) -> None:
        if self.collection.apply_batch(changes) and self._on_change is not None:
            self._on_change()

    async def restart(self, query: Query | None = None, *, reset: bool = False) -> None:
        """Resubscribe, optionally to a new query.

        Cached items are kept unless ``reset`` is set; the fresh stream's
        initial batch is merged idempotently into them.
        """
        self.stop()
        if query is not None:
            self.query = query
        if reset:
            self.collection.clear()
        await self.start()

    async def flush(self) -> None:
        if self._subscription is not None:
            await self._subscription.flush()

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def items(self) -> list[T]:
        return self.collection.items()
