"""Live change streams.

A :class:`ChangeHub` keeps the last result set of every open stream and, on
each write to a collection, re-evaluates the affected queries and emits the
difference as one batch of :class:`Change` records.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable

from signal_client.store.base import Change, ChangeType, Document, Query

logger = logging.getLogger(__name__)

_CLOSED = object()

Evaluator = Callable[[Query], Awaitable[list[Document]]]


class ChangeStream:
    """Async iterator over change batches for one query.

    The first batch lists every current result as ``added`` (possibly empty).
    Backend failures are raised from the iterator, after which the stream ends.
    """

    def __init__(self, query: Query, hub: ChangeHub | None = None) -> None:
        self.query = query
        self._hub = hub
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._snapshot: dict[str, Document] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, changes: list[Change]) -> None:
        if not self._closed:
            self._queue.put_nowait(changes)

    def _fail(self, exc: BaseException) -> None:
        if not self._closed:
            self._queue.put_nowait(exc)
            self._detach()

    def _detach(self) -> None:
        if self._hub is not None:
            self._hub.discard(self)
            self._hub = None

    def __aiter__(self) -> AsyncGenerator[list[Change], None]:
        return self._iterate()

    async def _iterate(self) -> AsyncGenerator[list[Change], None]:
        while True:
            item = await self._queue.get()
            try:
                if item is _CLOSED:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item  # type: ignore[misc]
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every delivered batch has been consumed."""
        await self._queue.join()

    def close(self) -> None:
        """Stop delivery; pending batches are dropped."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(_CLOSED)
        self._detach()


class ChangeHub:
    """Fans writes out to the open streams of a store."""

    def __init__(self, evaluate: Evaluator) -> None:
        self._evaluate = evaluate
        self._streams: list[ChangeStream] = []

    def __len__(self) -> int:
        return len(self._streams)

    async def open(self, query: Query) -> ChangeStream:
        stream = ChangeStream(query, self)
        documents = await self._evaluate(query)
        stream._snapshot = {doc.id: doc for doc in documents}
        stream._push([Change(ChangeType.ADDED, doc) for doc in documents])
        self._streams.append(stream)
        return stream

    def discard(self, stream: ChangeStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    async def publish(self, collections: set[str]) -> None:
        """Re-evaluate streams over ``collections`` and emit their diffs."""
        for stream in list(self._streams):
            if stream.closed or stream.query.collection not in collections:
                continue
            try:
                documents = await self._evaluate(stream.query)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Change stream on %s failed: %s", stream.query.collection, exc)
                stream._fail(exc)
                continue

            changes = diff(stream._snapshot, documents)
            stream._snapshot = {doc.id: doc for doc in documents}
            if changes:
                logger.debug(
                    "Emitting %d change(s) on %s", len(changes), stream.query.collection
                )
                stream._push(changes)

    def close(self) -> None:
        for stream in list(self._streams):
            stream.close()
        self._streams.clear()


def diff(previous: dict[str, Document], current: list[Document]) -> list[Change]:
    """Classify the transition from ``previous`` to ``current`` as changes."""
    changes: list[Change] = []
    seen: set[str] = set()
    for doc in current:
        seen.add(doc.id)
        before = previous.get(doc.id)
        if before is None:
            changes.append(Change(ChangeType.ADDED, doc))
        elif before.data != doc.data:
            changes.append(Change(ChangeType.MODIFIED, doc))
    for doc_id, doc in previous.items():
        if doc_id not in seen:
            changes.append(Change(ChangeType.REMOVED, doc))
    return changes
