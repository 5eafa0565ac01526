"""Document-store contract and bundled backends."""

from signal_client.core.settings import Settings
from signal_client.store.base import (
    DOCUMENT_ID,
    SERVER_TIMESTAMP,
    Change,
    ChangeType,
    Cursor,
    Document,
    DocumentStore,
    Increment,
    Page,
    Query,
    WriteBatch,
    increment,
)
from signal_client.store.changes import ChangeStream
from signal_client.store.memory import MemoryDocumentStore

__all__ = [
    "DOCUMENT_ID",
    "SERVER_TIMESTAMP",
    "Change",
    "ChangeStream",
    "ChangeType",
    "Cursor",
    "Document",
    "DocumentStore",
    "Increment",
    "MemoryDocumentStore",
    "Page",
    "Query",
    "WriteBatch",
    "build_store",
    "increment",
]


def build_store(config: Settings) -> DocumentStore:
    """Instantiate the backend selected by ``config.store_backend``."""
    if config.store_backend == "sql":
        from signal_client.store.sql import SqlDocumentStore

        return SqlDocumentStore.from_url(config.effective_database_url, echo=config.sql_debug)
    return MemoryDocumentStore()
