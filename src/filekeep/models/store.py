"""StoreItem — the single table behind ``DatabaseDocumentStore``.

Provides ``StoreItemBase`` (non-table) and ``StoreItem`` (concrete table).
Subclass ``StoreItemBase`` with ``table=True`` and a custom
``__tablename__`` to use a different table name.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class StoreItemBase(SQLModel):
    """Base fields for a stored document. Subclass with ``table=True`` for a concrete table."""

    partition: str = Field(primary_key=True)
    sort: str = Field(primary_key=True)
    index_key: str | None = Field(default=None, index=True)
    revision: int = Field(default=1)
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class StoreItem(StoreItemBase, table=True):
    """Default document table — ``filekeep_items``."""

    __tablename__ = "filekeep_items"
