"""VersionManager — lineage numbering, supersede, version listing.

Uploads that share an original filename within one
(project, task, folder) scope form a lineage.  Only *active* members
count: a lineage whose members were all deleted starts again at 1.0
(fresh container).

Version assignment is serialized per lineage by a compare-and-swap on
the lineage head record, so two concurrent uploads cannot both claim the
same number.  Demoting earlier versions to ``superseded`` is background
work and may lag behind the upload that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .config import LifecycleConfig
from .exceptions import (
    ConditionFailedError,
    ConflictError,
    FileKeepError,
    InvalidArgumentError,
    NotFoundError,
)
from .models.files import FileRecord, LineageRecord
from .models.status import LifecycleStatus, VersionStatus
from .store.keys import FILES_PARTITION, file_key, lineage_head_key, lineage_index
from .tasks import BackgroundTasks
from .types import ListVersionsResult, UploadRequest, UploadResult, VersionInfo
from .utils import ensure_aware, file_format, format_version, lineage_key_for, parse_version, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .directories import FolderService
    from .store.protocol import BlobStore, DocumentStore, StoredItem

logger = logging.getLogger(__name__)

_DEMOTE_BACKOFF_SECONDS = 0.05


# =============================================================================
# Lineage lookup strategies
# =============================================================================


@runtime_checkable
class LineageLookup(Protocol):
    """Finds every file record of a lineage, whatever its status."""

    async def members(self, lineage_key: str) -> list[StoredItem]: ...


class IndexedLineageLookup:
    """Lineage lookup through the store's secondary index (default)."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def members(self, lineage_key: str) -> list[StoredItem]:
        return await self._store.query_index(lineage_index(lineage_key))


class ScanLineageLookup:
    """Lineage lookup by scan-with-filter, for stores without the index."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def members(self, lineage_key: str) -> list[StoredItem]:
        def _match(item: StoredItem) -> bool:
            return (
                item.key.partition == FILES_PARTITION
                and item.data.get("lineage_key") == lineage_key
            )

        return await self._store.scan(_match)


# =============================================================================
# VersionManager
# =============================================================================


@dataclass
class _Assignment:
    number: int
    generation: int
    fresh: bool
    previous_ids: list[str] = field(default_factory=list)


class VersionManager:
    """Assigns version numbers to uploads and answers version-history queries."""

    def __init__(
        self,
        store: DocumentStore,
        folders: FolderService,
        *,
        blobs: BlobStore | None = None,
        tasks: BackgroundTasks | None = None,
        config: LifecycleConfig | None = None,
        lineage_lookup: LineageLookup | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._folders = folders
        self._blobs = blobs
        self._tasks = tasks or BackgroundTasks()
        self._config = config or LifecycleConfig()
        self._lookup = lineage_lookup or IndexedLineageLookup(store)
        self._clock = clock

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_new_version(
        self,
        request: UploadRequest,
        content: bytes | None = None,
    ) -> UploadResult:
        """Record a new upload as the current version of its lineage.

        The file record is written before this returns.  Earlier versions
        are marked ``superseded`` by a background task; their ids are
        listed in ``UploadResult.pending_supersede``.
        """
        _validate_upload(request)
        if content is not None and self._blobs is None:
            raise InvalidArgumentError("Content given but no blob store is configured")
        if request.parent_folder_id is not None:
            await self._folders.require_active(request.parent_folder_id)

        key = lineage_key_for(
            request.original_name,
            request.project_id,
            request.task_id,
            request.parent_folder_id,
        )

        if content is not None:
            await self._blobs.put_blob(request.storage_path, content, request.mime_type)  # type: ignore[union-attr]

        file_id = str(uuid.uuid4())
        try:
            record, assignment = await self._record_upload(request, key, file_id)
        except FileKeepError:
            if content is not None:
                await self._discard_blob(request.storage_path)
            raise

        if assignment.previous_ids:
            self._tasks.spawn(
                self._supersede(key, file_id, assignment.previous_ids),
                name=f"supersede:{key}:{file_id}",
            )

        if assignment.fresh:
            logger.info(
                "Fresh container for %r (lineage %s, generation %d)",
                record.original_name,
                key,
                assignment.generation,
            )
        else:
            logger.info(
                "Uploaded %r as version %s (lineage %s); %d earlier version(s) pending supersede",
                record.original_name,
                record.version,
                key,
                len(assignment.previous_ids),
            )

        return UploadResult(
            file=record,
            lineage_key=key,
            version=record.version,
            generation=assignment.generation,
            fresh_container=assignment.fresh,
            pending_supersede=list(assignment.previous_ids),
        )

    async def _record_upload(
        self,
        request: UploadRequest,
        key: str,
        file_id: str,
    ) -> tuple[FileRecord, _Assignment]:
        assignment = await self._assign_version(key, file_id)
        now = self._clock()
        original_name = request.original_name.strip()
        record = FileRecord(
            id=file_id,
            name=request.name or original_name,
            original_name=original_name,
            size=request.size,
            mime_type=request.mime_type,
            file_format=file_format(original_name),
            storage_path=request.storage_path,
            project_id=request.project_id,
            task_id=request.task_id,
            parent_folder_id=request.parent_folder_id,
            uploaded_by=request.uploaded_by,
            workflow_state=request.workflow_state,
            lineage_key=key,
            version=format_version(assignment.number),
            version_status=VersionStatus.CURRENT,
            generation=assignment.generation,
            created_at=now,
            updated_at=now,
        )
        await self._store.put(
            file_key(file_id),
            record.model_dump(mode="json"),
            index_key=lineage_index(key),
            if_revision=0,
        )
        return record, assignment

    async def _discard_blob(self, storage_path: str) -> None:
        try:
            await self._blobs.delete_blob(storage_path)  # type: ignore[union-attr]
        except FileKeepError:
            logger.warning("Failed to discard blob %s after a failed upload", storage_path, exc_info=True)

    async def _assign_version(self, lineage_key: str, file_id: str) -> _Assignment:
        head_key = lineage_head_key(lineage_key)
        for attempt in range(self._config.version_retry_limit):
            head_item = await self._store.get(head_key)
            head = LineageRecord.model_validate(head_item.data) if head_item else None
            revision = head_item.revision if head_item else 0

            active = await self.active_members(lineage_key)
            active_ids = [f.id for f in active]
            head_live = head is not None and await self._head_is_live(head, active_ids)

            previous = list(active_ids)
            if head_live and head.current_file_id not in previous:  # type: ignore[union-attr]
                previous.append(head.current_file_id)  # type: ignore[union-attr, arg-type]

            if not previous:
                assignment = _Assignment(
                    number=1,
                    generation=(head.generation + 1) if head else 1,
                    fresh=True,
                )
            else:
                counted = head.version_count if head_live else 0  # type: ignore[union-attr]
                # A restored older container keeps its own generation.
                generation = max(
                    (f.generation for f in active),
                    default=head.generation if head else 1,
                )
                assignment = _Assignment(
                    number=max(len(active), counted) + 1,
                    generation=generation,
                    fresh=False,
                    previous_ids=previous,
                )

            # The head keeps the highest generation ever handed out.
            new_head = LineageRecord(
                lineage_key=lineage_key,
                generation=max(assignment.generation, head.generation if head else 0),
                version_count=assignment.number,
                current_file_id=file_id,
                updated_at=self._clock(),
            )
            if head is not None and not assignment.fresh:
                new_head.batch_deleted_at = head.batch_deleted_at
                new_head.batch_deadline = head.batch_deadline
            try:
                await self._store.put(
                    head_key,
                    new_head.model_dump(mode="json"),
                    if_revision=revision,
                )
            except ConditionFailedError:
                logger.debug(
                    "Lineage %s head changed concurrently (attempt %d); renumbering",
                    lineage_key,
                    attempt + 1,
                )
                continue
            return assignment

        raise ConflictError(
            f"Could not assign a version in lineage {lineage_key} after "
            f"{self._config.version_retry_limit} attempts",
            public_message="Too many concurrent uploads of this file; retry the upload",
        )

    async def _head_is_live(self, head: LineageRecord, active_ids: list[str]) -> bool:
        """True if the head's current file is active or still being written."""
        if head.current_file_id is None:
            return False
        if head.current_file_id in active_ids:
            return True
        if await self._store.get(file_key(head.current_file_id)) is not None:
            return False
        age = self._clock() - ensure_aware(head.updated_at)
        return age < timedelta(seconds=self._config.in_flight_grace_seconds)

    # ------------------------------------------------------------------
    # Supersede (background)
    # ------------------------------------------------------------------

    async def _supersede(self, lineage_key: str, new_file_id: str, file_ids: list[str]) -> int:
        demoted = 0
        for file_id in file_ids:
            if file_id == new_file_id:
                continue
            try:
                if await self._demote(file_id):
                    demoted += 1
            except FileKeepError:
                logger.warning(
                    "Failed to mark %s superseded in lineage %s",
                    file_id,
                    lineage_key,
                    exc_info=True,
                )
        logger.debug("Superseded %d record(s) in lineage %s", demoted, lineage_key)
        return demoted

    async def _demote(self, file_id: str) -> bool:
        key = file_key(file_id)
        for attempt in range(self._config.write_retry_limit):
            item = await self._store.get(key)
            if item is None:
                # Written by a concurrent upload that has not landed yet.
                await asyncio.sleep(_DEMOTE_BACKOFF_SECONDS * (attempt + 1))
                continue
            record = FileRecord.model_validate(item.data)
            # Never overwrite a record that was soft-deleted in the meantime.
            if not record.is_active or record.version_status == VersionStatus.SUPERSEDED:
                return False
            record.version_status = VersionStatus.SUPERSEDED
            record.updated_at = self._clock()
            try:
                await self._store.put(
                    key,
                    record.model_dump(mode="json"),
                    index_key=item.index_key,
                    if_revision=item.revision,
                )
            except ConditionFailedError:
                continue
            return True
        logger.warning("Gave up marking %s superseded after repeated conflicts", file_id)
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_file(self, file_id: str) -> FileRecord:
        item = await self.get_file_item(file_id)
        return FileRecord.model_validate(item.data)

    async def get_file_item(self, file_id: str) -> StoredItem:
        if not file_id:
            raise InvalidArgumentError("Valid file ID required")
        item = await self._store.get(file_key(file_id))
        if item is None:
            raise NotFoundError(f"File not found: {file_id}")
        return item

    async def lineage_items(self, lineage_key: str) -> list[StoredItem]:
        """Every stored record of a lineage, any lifecycle status."""
        return await self._lookup.members(lineage_key)

    async def active_members(self, lineage_key: str) -> list[FileRecord]:
        items = await self.lineage_items(lineage_key)
        records = [FileRecord.model_validate(i.data) for i in items]
        return [r for r in records if r.is_active]

    async def list_versions(
        self,
        lineage_key: str,
        *,
        include_deleted: bool = False,
    ) -> ListVersionsResult:
        """Versions of a lineage, newest first.

        Current and superseded records are returned; trashed records only
        with *include_deleted*; purged records never.
        """
        if not lineage_key:
            raise InvalidArgumentError("Lineage key is required")
        items = await self.lineage_items(lineage_key)
        if not items:
            raise NotFoundError(f"Lineage not found: {lineage_key}")

        allowed = {LifecycleStatus.ACTIVE}
        if include_deleted:
            allowed.add(LifecycleStatus.DELETED)
        records = [FileRecord.model_validate(i.data) for i in items]
        records = [r for r in records if r.lifecycle_status in allowed]
        records.sort(
            key=lambda r: (parse_version(r.version), r.generation, ensure_aware(r.created_at)),
            reverse=True,
        )
        return ListVersionsResult(
            lineage_key=lineage_key,
            versions=[_version_info(r) for r in records],
        )

    async def list_versions_for_file(
        self,
        file_id: str,
        *,
        include_deleted: bool = False,
    ) -> ListVersionsResult:
        record = await self.get_file(file_id)
        return await self.list_versions(record.lineage_key, include_deleted=include_deleted)

    async def get_current_version(self, lineage_key: str) -> FileRecord | None:
        """The active ``current`` record, or None for an empty lineage.

        While a supersede is still pending two records can both say
        ``current``; the highest version wins.
        """
        current = [
            r
            for r in await self.active_members(lineage_key)
            if r.version_status == VersionStatus.CURRENT
        ]
        if not current:
            return None
        return max(current, key=lambda r: (parse_version(r.version), ensure_aware(r.created_at)))


def _validate_upload(request: UploadRequest) -> None:
    if not request.original_name or not request.original_name.strip():
        raise InvalidArgumentError("Original filename is required")
    if "/" in request.original_name:
        raise InvalidArgumentError("Original filename may not contain '/'")
    if not request.uploaded_by:
        raise InvalidArgumentError("Uploader is required")
    if request.size < 0:
        raise InvalidArgumentError(f"Invalid size: {request.size}")
    if not request.storage_path:
        raise InvalidArgumentError("Storage path is required")


def _version_info(record: FileRecord) -> VersionInfo:
    return VersionInfo(
        file_id=record.id,
        version=record.version,
        version_status=record.version_status.value,
        lifecycle_status=record.lifecycle_status.value,
        name=record.name,
        size=record.size,
        generation=record.generation,
        uploaded_by=record.uploaded_by,
        created_at=record.created_at,
        workflow_state=record.workflow_state,
    )
