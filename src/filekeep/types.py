"""Result types: UploadResult, DeleteResult, ResolvedLink, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from filekeep.models.files import FileRecord


@dataclass
class UploadRequest:
    """Descriptor of a new upload."""

    original_name: str
    uploaded_by: str
    size: int
    mime_type: str
    storage_path: str
    project_id: str | None = None
    task_id: str | None = None
    parent_folder_id: str | None = None
    workflow_state: str | None = None
    name: str | None = None
    """Display name; defaults to ``original_name``."""


@dataclass
class UploadResult:
    """Result of an upload.

    ``pending_supersede`` lists the ids of earlier versions that will be
    marked ``superseded`` by background work.  They are not guaranteed to
    show the new status when this result is returned.
    """

    file: FileRecord
    lineage_key: str
    version: str
    generation: int
    fresh_container: bool
    pending_supersede: list[str] = field(default_factory=list)


@dataclass
class VersionInfo:
    """Version history entry."""

    file_id: str
    version: str
    version_status: str
    lifecycle_status: str
    name: str
    size: int
    generation: int
    uploaded_by: str
    created_at: datetime | None = None
    workflow_state: str | None = None


@dataclass
class ListVersionsResult:
    """Result of a list_versions operation, newest first."""

    lineage_key: str
    versions: list[VersionInfo] = field(default_factory=list)

    @property
    def current(self) -> VersionInfo | None:
        for v in self.versions:
            if v.version_status == "current" and v.lifecycle_status == "active":
                return v
        return None


@dataclass
class DeleteResult:
    """Result of a soft or permanent delete."""

    message: str
    resource_type: str
    resource_id: str
    total_deleted: int = 0
    deleted_ids: list[str] = field(default_factory=list)
    scheduled_deletion_at: datetime | None = None
    permanent: bool = False


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    message: str
    resource_type: str
    resource_id: str
    restored_ids: list[str] = field(default_factory=list)
    renamed_ids: list[str] = field(default_factory=list)


@dataclass
class TrashEntry:
    """One soft-deleted file or folder."""

    resource_type: str
    id: str
    name: str
    deleted_at: datetime | None
    deleted_by: str | None
    scheduled_deletion_at: datetime | None
    original_name: str | None = None
    version: str | None = None
    size: int | None = None


@dataclass
class ListTrashResult:
    """Result of a list_trash operation, most recently deleted first."""

    entries: list[TrashEntry] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return sum(1 for e in self.entries if e.resource_type == "file")

    @property
    def total_folders(self) -> int:
        return sum(1 for e in self.entries if e.resource_type == "folder")


@dataclass
class PurgeResult:
    """Result of one purge sweep."""

    ran_at: datetime
    files_purged: int = 0
    folders_purged: int = 0
    blobs_released: int = 0
    purged_ids: list[str] = field(default_factory=list)


@dataclass
class LinkInfo:
    """Shareable link metadata.  Never carries the password hash."""

    id: str
    resource_type: str
    resource_id: str
    permission: str
    is_public: bool
    has_password: bool
    expires_at: datetime | None
    max_uses: int | None
    current_uses: int
    created_by: str
    is_active: bool
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ListLinksResult:
    """Result of a list_links_for_resource operation."""

    resource_type: str
    resource_id: str
    links: list[LinkInfo] = field(default_factory=list)
    cached: bool = False


@dataclass
class ResolvedLink:
    """What a successful link resolution grants."""

    link_id: str
    resource_type: str
    resource_id: str
    permission: str
    current_uses: int
    max_uses: int | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def remaining_uses(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(self.max_uses - self.current_uses, 0)
