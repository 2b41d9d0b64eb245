"""Folder document model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from .status import LifecycleStatus


class FolderRecord(SQLModel):
    """A folder in the per-tenant tree.  ``parent_id=None`` is the root."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")
    parent_id: str | None = Field(default=None, index=True)
    project_id: str | None = Field(default=None)
    created_by: str = Field(default="")
    lifecycle_status: LifecycleStatus = Field(default=LifecycleStatus.ACTIVE)
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    deleted_by: str | None = Field(default=None)
    scheduled_deletion_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    purged_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_active(self) -> bool:
        return self.lifecycle_status == LifecycleStatus.ACTIVE
