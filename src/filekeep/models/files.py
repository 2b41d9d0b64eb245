"""File and lineage-head document models.

``FileRecord`` is one uploaded version.  Records sharing a ``lineage_key``
form the version history of one user-visible file (a container).
``LineageRecord`` is the per-lineage head used to assign version numbers
with a compare-and-swap.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from .status import LifecycleStatus, VersionStatus


class FileRecord(SQLModel):
    """One stored file version."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")
    original_name: str = Field(default="")
    size: int = Field(default=0)
    mime_type: str = Field(default="application/octet-stream")
    file_format: str | None = Field(default=None)
    storage_path: str = Field(default="")
    project_id: str | None = Field(default=None)
    task_id: str | None = Field(default=None)
    parent_folder_id: str | None = Field(default=None)
    uploaded_by: str = Field(default="")
    workflow_state: str | None = Field(default=None)
    lineage_key: str = Field(default="", index=True)
    version: str = Field(default="1.0")
    version_status: VersionStatus = Field(default=VersionStatus.CURRENT)
    generation: int = Field(default=1)
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


class LineageRecord(SQLModel):
    """Head of a version lineage.

    ``generation`` increments each time the lineage restarts at 1.0 after
    every member left the active set; it never decreases.  ``version_count``
    is the number of the latest version assigned within the current
    generation.  ``batch_deleted_at``/``batch_deadline`` hold the stamp of
    a container delete that has not finished, so a retry can continue it.
    """

    lineage_key: str = Field(primary_key=True)
    generation: int = Field(default=1)
    version_count: int = Field(default=0)
    current_file_id: str | None = Field(default=None)
    batch_deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    batch_deadline: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
