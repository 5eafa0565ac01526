"""Backend-side query evaluation and field transforms.

Both bundled backends evaluate filters, ordering and cursors here so they
agree on semantics: documents missing a filtered field never match, values
order by type rank first (null < bool < number < timestamp < string < other),
and the document id is the final tie-breaker.
"""

from __future__ import annotations

import copy
import functools
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from signal_client.core.clock import ensure_aware
from signal_client.store.base import (
    DOCUMENT_ID,
    SERVER_TIMESTAMP,
    Cursor,
    Document,
    FieldFilter,
    Increment,
    Page,
    Query,
)

_MISSING = object()


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, int | float):
        return 2
    if isinstance(value, datetime):
        return 3
    if isinstance(value, str):
        return 4
    return 5


def sort_token(value: Any) -> tuple[int, Any]:
    """Return a totally ordered key for a stored value."""
    rank = _type_rank(value)
    if rank == 0:
        return (0, 0)
    if rank == 3:
        return (3, ensure_aware(value).timestamp())
    if rank == 5:
        return (5, repr(value))
    return (rank, value)


def _compare(left: Any, right: Any) -> int:
    a, b = sort_token(left), sort_token(right)
    return (a > b) - (a < b)


def matches(document: Document, flt: FieldFilter) -> bool:
    """Evaluate a single filter against a document."""
    value = document.get(flt.field, _MISSING)
    if value is _MISSING:
        return False

    if flt.op == "==":
        return bool(value == flt.value)
    if flt.op == "!=":
        return bool(value != flt.value)
    if flt.op == "in":
        return value in flt.value
    if flt.op == "array-contains":
        return isinstance(value, list | tuple) and flt.value in value

    if _type_rank(value) != _type_rank(flt.value):
        return False
    order = _compare(value, flt.value)
    if flt.op == "<":
        return order < 0
    if flt.op == "<=":
        return order <= 0
    if flt.op == ">":
        return order > 0
    return order >= 0


def sort_values(document: Document, query: Query) -> tuple[Any, ...]:
    """Values of the query's order-by fields for ``document``."""
    return tuple(document.get(clause.field) for clause in query.order_by)


def _document_cmp(query: Query):
    def compare(left: tuple[tuple[Any, ...], str], right: tuple[tuple[Any, ...], str]) -> int:
        left_values, left_id = left
        right_values, right_id = right
        for clause, a, b in zip(query.order_by, left_values, right_values, strict=True):
            order = _compare(a, b)
            if order:
                return -order if clause.descending else order
        return (left_id > right_id) - (left_id < right_id)

    return compare


def order_documents(documents: Iterable[Document], query: Query) -> list[Document]:
    """Sort documents by the query's order-by clauses, then by id."""
    compare = _document_cmp(query)
    return sorted(
        documents,
        key=functools.cmp_to_key(
            lambda a, b: compare((sort_values(a, query), a.id), (sort_values(b, query), b.id))
        ),
    )


def run_query(documents: Iterable[Document], query: Query) -> Page:
    """Filter, order, resume after the cursor and cut to the limit."""
    candidates = [
        doc
        for doc in documents
        if all(matches(doc, flt) for flt in query.filters)
        and all(doc.has(clause.field) or clause.field == DOCUMENT_ID for clause in query.order_by)
    ]
    ordered = order_documents(candidates, query)

    if query.start_after is not None:
        compare = _document_cmp(query)
        anchor = (query.start_after.values, query.start_after.document_id)
        ordered = [
            doc for doc in ordered if compare((sort_values(doc, query), doc.id), anchor) > 0
        ]

    if query.limit is not None:
        ordered = ordered[: query.limit]

    cursor = None
    if ordered:
        last = ordered[-1]
        cursor = Cursor(values=sort_values(last, query), document_id=last.id)
    return Page(documents=ordered, cursor=cursor, limit=query.limit)


def apply_fields(
    data: Mapping[str, Any], fields: Mapping[str, Any], now: datetime
) -> dict[str, Any]:
    """Return a copy of ``data`` with a partial update applied.

    Dotted keys address nested maps, creating intermediate maps as needed.
    """
    result = copy.deepcopy(dict(data))
    for path, value in fields.items():
        parts = path.split(".")
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        leaf = parts[-1]
        target[leaf] = resolve_transform(target.get(leaf), value, now)
    return result


def resolve_transform(current: Any, value: Any, now: datetime) -> Any:
    """Resolve backend-side transforms against the currently stored value."""
    if isinstance(value, Increment):
        base = current if isinstance(current, int | float) and not isinstance(current, bool) else 0
        return base + value.delta
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Mapping):
        return {key: resolve_transform(None, item, now) for key, item in value.items()}
    return copy.deepcopy(value)


def materialize(data: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    """Resolve transforms in a full document body written with create/set."""
    return {key: resolve_transform(None, value, now) for key, value in data.items()}
