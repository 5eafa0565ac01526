"""SQLAlchemy model for stored documents."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from signal_client.core.clock import utcnow
from signal_client.db.session import Base


class StoredDocument(Base):
    """One document of one collection.

    The body is kept as a JSON column; timestamps inside it are tagged so they
    survive the round trip (see :mod:`signal_client.store.sql`).
    """

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
