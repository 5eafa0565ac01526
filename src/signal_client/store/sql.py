"""SQLAlchemy-backed document store.

Documents live in a single ``documents`` table keyed by ``(collection, id)``
with a JSON body. Blocking database work runs in a worker thread via
:func:`asyncio.to_thread`; writes are serialised by an :class:`asyncio.Lock`
so counter transforms are resolved here and never by the caller.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from signal_client.core.clock import utcnow
from signal_client.core.errors import (
    DocumentNotFoundError,
    StoreClosedError,
    StoreError,
    TransientStoreError,
)
from signal_client.db.models import StoredDocument
from signal_client.db.session import build_engine, build_session_factory, create_tables
from signal_client.store.base import Document, DocumentStore, Page, Query, WriteBatch
from signal_client.store.changes import ChangeHub, ChangeStream
from signal_client.store.query import apply_fields, materialize, run_query

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DATETIME_TAG = "__datetime__"


def encode_value(value: Any) -> Any:
    """Convert a document value into JSON-storable form."""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, Mapping):
        return {key: encode_value(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of :func:`encode_value`."""
    if isinstance(value, dict):
        if len(value) == 1 and _DATETIME_TAG in value:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


class SqlDocumentStore(DocumentStore):
    """:class:`DocumentStore` persisted through SQLAlchemy."""

    def __init__(
        self,
        engine: Engine,
        *,
        clock: Callable[[], datetime] = utcnow,
        create_schema: bool = True,
    ) -> None:
        self._engine = engine
        self._session_factory: sessionmaker[Session] = build_session_factory(engine)
        self._clock = clock
        self._write_lock = asyncio.Lock()
        self._hub = ChangeHub(self._evaluate)
        self._closed = False
        if create_schema:
            create_tables(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> SqlDocumentStore:
        """Build a store (and its tables) for a database URL."""
        return cls(build_engine(url, echo=echo))

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Document store is closed")

    async def _call(self, func: Callable[[Session], T]) -> T:
        self._ensure_open()

        def run() -> T:
            with self._session_factory() as session:
                try:
                    result = func(session)
                    session.commit()
                    return result
                except BaseException:
                    session.rollback()
                    raise

        try:
            return await asyncio.to_thread(run)
        except StoreError:
            raise
        except OperationalError as exc:
            raise TransientStoreError(f"Database unavailable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Database error: {exc}") from exc

    async def _write(self, func: Callable[[Session], T], collections: set[str]) -> T:
        async with self._write_lock:
            result = await self._call(func)
        await self._hub.publish(collections)
        return result

    @staticmethod
    def _load(session: Session, collection: str, document_id: str) -> StoredDocument | None:
        return session.get(StoredDocument, (collection, document_id), with_for_update=True)

    @staticmethod
    def _store(session: Session, collection: str, document_id: str, data: dict[str, Any]) -> None:
        row = session.get(StoredDocument, (collection, document_id))
        encoded = encode_value(data)
        if row is None:
            session.add(StoredDocument(collection=collection, id=document_id, data=encoded))
        else:
            row.data = encoded

    def _select(self, session: Session, query: Query) -> Page:
        rows = session.scalars(
            select(StoredDocument).where(StoredDocument.collection == query.collection)
        ).all()
        docs = (Document(row.id, decode_value(row.data)) for row in rows)
        return run_query(docs, query)

    async def _evaluate(self, query: Query) -> list[Document]:
        page = await self._call(lambda session: self._select(session, query))
        return page.documents

    async def create(self, collection: str, data: Mapping[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        body = materialize(data, self._clock())
        await self._write(
            lambda session: self._store(session, collection, document_id, body), {collection}
        )
        return document_id

    async def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        body = materialize(data, self._clock())
        await self._write(
            lambda session: self._store(session, collection, document_id, body), {collection}
        )

    async def get(self, collection: str, document_id: str) -> Document | None:
        def load(session: Session) -> Document | None:
            row = session.get(StoredDocument, (collection, document_id))
            if row is None:
                return None
            return Document(row.id, decode_value(row.data))

        return await self._call(load)

    async def update(
        self, collection: str, document_id: str, fields: Mapping[str, Any]
    ) -> None:
        now = self._clock()

        def apply(session: Session) -> None:
            row = self._load(session, collection, document_id)
            if row is None:
                raise DocumentNotFoundError(collection, document_id)
            row.data = encode_value(apply_fields(decode_value(row.data), fields, now))

        await self._write(apply, {collection})

    async def delete(self, collection: str, document_id: str) -> None:
        def remove(session: Session) -> None:
            session.execute(
                delete(StoredDocument).where(
                    StoredDocument.collection == collection,
                    StoredDocument.id == document_id,
                )
            )

        await self._write(remove, {collection})

    async def query(self, query: Query) -> Page:
        return await self._call(lambda session: self._select(session, query))

    async def subscribe(self, query: Query) -> ChangeStream:
        self._ensure_open()
        return await self._hub.open(query)

    async def commit(self, batch: WriteBatch) -> None:
        now = self._clock()

        def apply(session: Session) -> None:
            for op in batch.operations:
                if op.kind == "set":
                    self._store(
                        session, op.collection, op.document_id, materialize(op.fields, now)
                    )
                elif op.kind == "update":
                    row = self._load(session, op.collection, op.document_id)
                    if row is None:
                        raise DocumentNotFoundError(op.collection, op.document_id)
                    row.data = encode_value(apply_fields(decode_value(row.data), op.fields, now))
                else:
                    row = session.get(StoredDocument, (op.collection, op.document_id))
                    if row is not None:
                        session.delete(row)
                session.flush()

        await self._write(apply, {op.collection for op in batch.operations})
        logger.debug("Committed batch of %d write(s)", len(batch))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub.close()
        self._engine.dispose()
