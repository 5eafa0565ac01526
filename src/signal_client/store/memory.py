"""In-process document store.

Used by the test-suite and for offline runs. Semantics match the SQL backend:
the same query evaluator, transforms resolved inside the store, atomic batches
and change streams fed by a :class:`ChangeHub`.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from signal_client.core.clock import utcnow
from signal_client.core.errors import DocumentNotFoundError, StoreClosedError
from signal_client.store.base import Document, DocumentStore, Page, Query, WriteBatch
from signal_client.store.changes import ChangeHub, ChangeStream
from signal_client.store.query import apply_fields, materialize, run_query

logger = logging.getLogger(__name__)


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed :class:`DocumentStore`."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._hub = ChangeHub(self._evaluate)
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Document store is closed")

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def _evaluate(self, query: Query) -> list[Document]:
        return self._run(query).documents

    def _run(self, query: Query) -> Page:
        docs = (
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collection(query.collection).items()
        )
        return run_query(docs, query)

    async def create(self, collection: str, data: Mapping[str, Any]) -> str:
        self._ensure_open()
        document_id = uuid.uuid4().hex
        self._collection(collection)[document_id] = materialize(data, self._clock())
        await self._hub.publish({collection})
        return document_id

    async def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        self._ensure_open()
        self._collection(collection)[document_id] = materialize(data, self._clock())
        await self._hub.publish({collection})

    async def get(self, collection: str, document_id: str) -> Document | None:
        self._ensure_open()
        data = self._collection(collection).get(document_id)
        if data is None:
            return None
        return Document(document_id, copy.deepcopy(data))

    async def update(
        self, collection: str, document_id: str, fields: Mapping[str, Any]
    ) -> None:
        self._ensure_open()
        documents = self._collection(collection)
        if document_id not in documents:
            raise DocumentNotFoundError(collection, document_id)
        documents[document_id] = apply_fields(documents[document_id], fields, self._clock())
        await self._hub.publish({collection})

    async def delete(self, collection: str, document_id: str) -> None:
        self._ensure_open()
        if self._collection(collection).pop(document_id, None) is not None:
            await self._hub.publish({collection})

    async def query(self, query: Query) -> Page:
        self._ensure_open()
        return self._run(query)

    async def subscribe(self, query: Query) -> ChangeStream:
        self._ensure_open()
        return await self._hub.open(query)

    async def commit(self, batch: WriteBatch) -> None:
        self._ensure_open()
        now = self._clock()
        staged: dict[tuple[str, str], dict[str, Any] | None] = {}

        def current(collection: str, document_id: str) -> dict[str, Any] | None:
            key = (collection, document_id)
            if key in staged:
                return staged[key]
            return self._collection(collection).get(document_id)

        for op in batch.operations:
            key = (op.collection, op.document_id)
            if op.kind == "set":
                staged[key] = materialize(op.fields, now)
            elif op.kind == "update":
                existing = current(op.collection, op.document_id)
                if existing is None:
                    raise DocumentNotFoundError(op.collection, op.document_id)
                staged[key] = apply_fields(existing, op.fields, now)
            else:
                staged[key] = None

        for (collection, document_id), data in staged.items():
            if data is None:
                self._collection(collection).pop(document_id, None)
            else:
                self._collection(collection)[document_id] = data
        logger.debug("Committed batch of %d write(s)", len(batch))
        if staged:
            await self._hub.publish({collection for collection, _ in staged})

    async def close(self) -> None:
        self._closed = True
        self._hub.close()
