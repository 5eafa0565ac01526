"""Base model for documents read from and written to the store."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from signal_client.store.base import Document


class DocumentModel(BaseModel):
    """Pydantic model mirroring a stored document.

    Attributes are snake_case; the stored field names are the camelCase
    aliases. Unknown fields are ignored so older clients keep parsing newer
    documents.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = ""

    @classmethod
    def from_document(cls, document: Document) -> Self:
        return cls.model_validate({**document.data, "id": document.id})

    def to_fields(self) -> dict[str, Any]:
        """Dump to stored field names, without the id."""
        return self.model_dump(by_alias=True, exclude={"id"})
