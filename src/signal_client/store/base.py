"""Document-store contract used by every service.

The backend owns all authoritative state. The client only ever talks to it
through :class:`DocumentStore`, so a real BaaS adapter, the SQL backend and the
in-memory fake are interchangeable.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from signal_client.store.changes import ChangeStream

# Pseudo field addressing the document id in filters and ordering.
DOCUMENT_ID = "__id__"

FILTER_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array-contains"})


class ChangeType(str, Enum):
    """Kinds of incremental change emitted by a subscription."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class Document:
    """A stored record: its id plus a JSON-like field mapping."""

    id: str
    data: Mapping[str, Any]

    def get(self, path: str, default: Any = None) -> Any:
        """Return a (possibly dotted) field value."""
        if path == DOCUMENT_ID:
            return self.id
        value: Any = self.data
        for part in path.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return default
            value = value[part]
        return value

    def has(self, path: str) -> bool:
        """Return True when the (possibly dotted) field is present."""
        missing = object()
        return self.get(path, missing) is not missing

    def to_dict(self) -> dict[str, Any]:
        """Return the fields merged with the document id."""
        return {**self.data, "id": self.id}


@dataclass(frozen=True)
class Change:
    """One incremental change to a query's result set."""

    type: ChangeType
    document: Document


@dataclass(frozen=True)
class Increment:
    """Field transform applied by the backend: add ``delta`` to the stored number."""

    delta: int | float


class _ServerTimestamp:
    """Field transform replaced by the backend's clock at write time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def increment(delta: int | float = 1) -> Increment:
    """Build an atomic counter transform."""
    return Increment(delta)


@dataclass(frozen=True)
class FieldFilter:
    """Single predicate of a query."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op!r}")


@dataclass(frozen=True)
class OrderBy:
    """Sort clause of a query."""

    field: str
    descending: bool = False


@dataclass(frozen=True)
class Cursor:
    """Opaque continuation point: the sort values and id of the last document seen."""

    values: tuple[Any, ...]
    document_id: str


@dataclass(frozen=True)
class Query:
    """Immutable query description; builder methods return new instances."""

    collection: str
    filters: tuple[FieldFilter, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None
    start_after: Cursor | None = None

    def where(self, field_path: str, op: str, value: Any) -> Query:
        return dataclasses.replace(self, filters=(*self.filters, FieldFilter(field_path, op, value)))

    def order(self, field_path: str, *, descending: bool = False) -> Query:
        return dataclasses.replace(self, order_by=(*self.order_by, OrderBy(field_path, descending)))

    def take(self, limit: int) -> Query:
        if limit < 1:
            raise ValueError("limit must be positive")
        return dataclasses.replace(self, limit=limit)

    def after(self, cursor: Cursor | None) -> Query:
        return dataclasses.replace(self, start_after=cursor)

    @classmethod
    def document(cls, collection: str, document_id: str) -> Query:
        """Query matching a single document by id."""
        return cls(collection).where(DOCUMENT_ID, "==", document_id)


@dataclass(frozen=True)
class Page:
    """One window of query results."""

    documents: list[Document]
    cursor: Cursor | None
    limit: int | None = None

    @property
    def has_more(self) -> bool:
        """True while full windows keep coming back."""
        return self.limit is not None and len(self.documents) == self.limit

    def __len__(self) -> int:
        return len(self.documents)


@dataclass
class BatchOperation:
    """Pending write inside a :class:`WriteBatch`."""

    kind: str
    collection: str
    document_id: str
    fields: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Collects writes that the backend applies atomically on commit."""

    def __init__(self) -> None:
        self.operations: list[BatchOperation] = []

    def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> WriteBatch:
        self.operations.append(BatchOperation("set", collection, document_id, dict(data)))
        return self

    def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> WriteBatch:
        self.operations.append(BatchOperation("update", collection, document_id, dict(fields)))
        return self

    def delete(self, collection: str, document_id: str) -> WriteBatch:
        self.operations.append(BatchOperation("delete", collection, document_id))
        return self

    def __len__(self) -> int:
        return len(self.operations)


class DocumentStore(ABC):
    """Abstract document database with live change streams."""

    @abstractmethod
    async def create(self, collection: str, data: Mapping[str, Any]) -> str:
        """Insert a document under a generated id and return the id."""

    @abstractmethod
    async def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        """Create or overwrite a document under a caller-chosen id."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Document | None:
        """Return a document, or None when it does not exist."""

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, fields: Mapping[str, Any]
    ) -> None:
        """Apply a partial update.

        Keys may be dotted paths into nested maps. Values may be
        :class:`Increment` or :data:`SERVER_TIMESTAMP` transforms, which the
        backend resolves itself.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """Delete a document; deleting an absent document is a no-op."""

    @abstractmethod
    async def query(self, query: Query) -> Page:
        """Run a one-shot query."""

    @abstractmethod
    async def subscribe(self, query: Query) -> ChangeStream:
        """Open a change stream; the first batch lists current results as added."""

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """Apply every write in ``batch`` atomically."""

    async def increment(
        self, collection: str, document_id: str, field_path: str, delta: int | float = 1
    ) -> None:
        """Atomically adjust a numeric field on the backend."""
        await self.update(collection, document_id, {field_path: Increment(delta)})

    def batch(self) -> WriteBatch:
        """Start a new atomic write batch."""
        return WriteBatch()

    async def close(self) -> None:
        """Release backend resources and close open streams."""
