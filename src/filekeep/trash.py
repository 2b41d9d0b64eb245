"""TrashManager — soft-delete, restore and the retention purge sweep.

Lifecycle of files and folders::

    active --soft-delete--> deleted --restore--> active
    deleted --purge (deadline passed)--> permanently_deleted

``permanently_deleted`` is terminal; the record is kept for audit and
only the content blob is released.

Every transition is a compare-and-swap on the record's revision that
re-checks the source state, so concurrent sweeps, deletes and restores
never move a record backwards.  Multi-record operations (a whole file
container, a folder subtree) share one ``deleted_at`` stamp; that stamp
identifies the batch when it is restored.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .config import LifecycleConfig
from .exceptions import (
    ConditionFailedError,
    ConflictError,
    FileKeepError,
    InvalidArgumentError,
    NotFoundError,
    PartialFailureError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from .models.files import FileRecord, LineageRecord
from .models.folders import FolderRecord
from .models.status import LifecycleStatus, ResourceType
from .store.keys import (
    FILE_PREFIX,
    FILES_PARTITION,
    FOLDER_PREFIX,
    FOLDERS_PARTITION,
    lineage_head_key,
)
from .types import DeleteResult, ListTrashResult, PurgeResult, RestoreResult, TrashEntry
from .utils import ensure_aware, repaired_display_name, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .directories import FolderService
    from .store.protocol import BlobStore, DocumentStore, StoredItem
    from .versioning import VersionManager

logger = logging.getLogger(__name__)

Record = FileRecord | FolderRecord


class TrashManager:
    """Moves files and folders through the trash lifecycle."""

    def __init__(
        self,
        store: DocumentStore,
        versions: VersionManager,
        folders: FolderService,
        *,
        blobs: BlobStore | None = None,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._versions = versions
        self._folders = folders
        self._blobs = blobs
        self._config = config or LifecycleConfig()
        self._clock = clock

    def _deadline(self, deleted_at: datetime) -> datetime:
        return deleted_at + timedelta(days=self._config.retention_days)

    # ------------------------------------------------------------------
    # Soft delete: file containers
    # ------------------------------------------------------------------

    async def soft_delete_file_container(self, file_id: str, deleted_by: str) -> DeleteResult:
        """Soft-delete every active version in the lineage of *file_id*."""
        _require_actor(deleted_by)
        record = await self._versions.get_file(file_id)
        return await self._delete_container(record.lineage_key, deleted_by, resource_id=file_id)

    async def soft_delete_lineage(self, lineage_key: str, deleted_by: str) -> DeleteResult:
        if not lineage_key:
            raise InvalidArgumentError("Lineage key is required")
        _require_actor(deleted_by)
        return await self._delete_container(lineage_key, deleted_by, resource_id=lineage_key)

    async def _delete_container(
        self,
        lineage_key: str,
        deleted_by: str,
        *,
        resource_id: str,
    ) -> DeleteResult:
        items = await self._versions.lineage_items(lineage_key)
        if not items:
            raise NotFoundError(f"Lineage not found: {lineage_key}")
        members = [(i, FileRecord.model_validate(i.data)) for i in items]
        active = [(i, r) for i, r in members if r.is_active]
        if not active:
            raise PreconditionFailedError(
                f"File container {lineage_key} has no active versions",
                public_message="File is already in trash",
            )

        stamped = {
            ensure_aware(r.deleted_at)
            for _, r in members
            if r.lifecycle_status == LifecycleStatus.DELETED and r.deleted_at is not None
        }
        deleted_at, deadline = await self._open_batch(lineage_key, stamped)

        applied, failed = await self._stamp_all(active, deleted_by, deleted_at, deadline)
        if failed:
            if not applied:
                raise StoreUnavailableError(
                    f"Could not soft-delete any version of lineage {lineage_key}"
                )
            raise PartialFailureError(
                f"Soft-deleted {len(applied)} of {len(active)} versions of lineage {lineage_key}",
                applied=applied,
                failed=failed,
            )
        await self._close_batch(lineage_key, deleted_at)

        logger.info(
            "Moved file container %s to trash: %d version(s), purge after %s",
            lineage_key,
            len(applied),
            deadline.isoformat(),
        )
        return DeleteResult(
            message="File moved to trash",
            resource_type=ResourceType.FILE.value,
            resource_id=resource_id,
            total_deleted=len(applied),
            deleted_ids=applied,
            scheduled_deletion_at=deadline,
        )

    async def _open_batch(
        self,
        lineage_key: str,
        stamped: set[datetime],
    ) -> tuple[datetime, datetime]:
        """Stamp and deadline for a container delete.

        An unfinished batch recorded on the lineage head is resumed when
        some member still carries its stamp; otherwise a new batch is
        recorded before any member is touched.
        """
        head_key = lineage_head_key(lineage_key)
        for _ in range(self._config.write_retry_limit):
            item = await self._store.get(head_key)
            if item is None:
                deleted_at = self._clock()
                return deleted_at, self._deadline(deleted_at)
            head = LineageRecord.model_validate(item.data)
            if head.batch_deleted_at is not None:
                pending = ensure_aware(head.batch_deleted_at)
                if pending in stamped:
                    logger.debug("Resuming unfinished delete of lineage %s", lineage_key)
                    return pending, ensure_aware(head.batch_deadline or self._deadline(pending))
            head.batch_deleted_at = self._clock()
            head.batch_deadline = self._deadline(head.batch_deleted_at)
            try:
                await self._store.put(head_key, head.model_dump(mode="json"), if_revision=item.revision)
            except ConditionFailedError:
                continue
            return head.batch_deleted_at, head.batch_deadline
        raise ConflictError(
            f"Lineage {lineage_key} head kept changing while starting a delete",
            public_message="The file is being changed; retry the delete",
        )

    async def _close_batch(self, lineage_key: str, deleted_at: datetime | None = None) -> None:
        """Clear the unfinished-delete marker (only *deleted_at*'s, if given)."""
        head_key = lineage_head_key(lineage_key)
        try:
            for _ in range(self._config.write_retry_limit):
                item = await self._store.get(head_key)
                if item is None:
                    return
                head = LineageRecord.model_validate(item.data)
                if head.batch_deleted_at is None:
                    return
                if deleted_at is not None and ensure_aware(head.batch_deleted_at) != deleted_at:
                    return
                head.batch_deleted_at = None
                head.batch_deadline = None
                try:
                    await self._store.put(head_key, head.model_dump(mode="json"), if_revision=item.revision)
                except ConditionFailedError:
                    continue
                return
        except StoreUnavailableError:
            # A stale marker is ignored once no member carries its stamp.
            logger.warning("Failed to clear delete marker on lineage %s", lineage_key, exc_info=True)

    # ------------------------------------------------------------------
    # Soft delete: folders
    # ------------------------------------------------------------------

    async def soft_delete_folder(self, folder_id: str, deleted_by: str) -> DeleteResult:
        """Soft-delete a folder, every folder below it and every file inside.

        The folder itself is stamped first.  Calling this again on a folder
        that is already ``deleted`` resumes the cascade with the original
        stamp, so a ``PartialFailureError`` can be cleared by retrying.
        """
        _require_actor(deleted_by)
        folder_item = await self._folders.get_item(folder_id)
        folder = FolderRecord.model_validate(folder_item.data)
        if folder.lifecycle_status == LifecycleStatus.PERMANENTLY_DELETED:
            raise PreconditionFailedError(
                f"Folder {folder_id} is permanently deleted",
                public_message="Folder no longer exists",
            )

        applied: list[str] = []
        if folder.is_active:
            deleted_at = self._clock()
            deadline = self._deadline(deleted_at)
            if await self._transition(
                folder_item, FolderRecord, _stamp(deleted_by, deleted_at, deadline)
            ):
                applied.append(folder_id)
        else:
            deleted_at = ensure_aware(folder.deleted_at or self._clock())
            deadline = ensure_aware(folder.scheduled_deletion_at or self._deadline(deleted_at))
            logger.debug("Folder %s already deleted; resuming cascade", folder_id)

        descendants = await self._folders.collect_descendants(folder_id)
        folder_ids = {folder_id} | {d.id for _, d in descendants}
        files = await self._folders.files_in_folders(folder_ids)

        pending: list[tuple[StoredItem, Record]] = [(i, r) for i, r in files if r.is_active]
        pending += [(i, d) for i, d in descendants if d.is_active]
        stamped, failed = await self._stamp_all(pending, deleted_by, deleted_at, deadline)
        applied += stamped

        if failed:
            raise PartialFailureError(
                f"Folder {folder_id} cascade incomplete: {len(failed)} item(s) failed",
                applied=applied,
                failed=failed,
            )

        logger.info(
            "Moved folder %s to trash with %d item(s), purge after %s",
            folder_id,
            len(applied),
            deadline.isoformat(),
        )
        return DeleteResult(
            message="Folder moved to trash",
            resource_type=ResourceType.FOLDER.value,
            resource_id=folder_id,
            total_deleted=len(applied),
            deleted_ids=applied,
            scheduled_deletion_at=deadline,
        )

    async def _stamp_all(
        self,
        targets: list[tuple[StoredItem, Record]],
        deleted_by: str,
        deleted_at: datetime,
        deadline: datetime,
    ) -> tuple[list[str], list[str]]:
        applied: list[str] = []
        failed: list[str] = []
        mutate = _stamp(deleted_by, deleted_at, deadline)
        for item, record in targets:
            try:
                if await self._transition(item, type(record), mutate):
                    applied.append(record.id)
            except (StoreUnavailableError, ConflictError):
                logger.warning("Failed to soft-delete %s", record.id, exc_info=True)
                failed.append(record.id)
        return applied, failed

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_file(self, file_id: str) -> RestoreResult:
        """Restore the container batch that *file_id* was deleted with."""
        item = await self._versions.get_file_item(file_id)
        record = FileRecord.model_validate(item.data)
        if record.lifecycle_status != LifecycleStatus.DELETED or record.deleted_at is None:
            raise PreconditionFailedError(
                f"File {file_id} is {record.lifecycle_status.value}, not deleted",
                public_message="File is not in trash",
            )
        if record.parent_folder_id is not None:
            await self._require_active_parent(record.parent_folder_id)

        members = [
            (i, FileRecord.model_validate(i.data))
            for i in await self._versions.lineage_items(record.lineage_key)
        ]
        if any(r.is_active for _, r in members):
            raise PreconditionFailedError(
                f"Lineage {record.lineage_key} already has active versions",
                public_message="A newer version of this file exists; it cannot be restored",
            )

        stamp = ensure_aware(record.deleted_at)
        batch = [
            (i, r)
            for i, r in members
            if r.id != file_id
            and r.lifecycle_status == LifecycleStatus.DELETED
            and r.deleted_at is not None
            and ensure_aware(r.deleted_at) == stamp
        ]
        restored, renamed = await self._restore_all([(item, record), *batch], stamp, primary_id=file_id)
        await self._close_batch(record.lineage_key)

        logger.info(
            "Restored file container %s: %d version(s), %d name(s) repaired",
            record.lineage_key,
            len(restored),
            len(renamed),
        )
        return RestoreResult(
            message="File restored successfully",
            resource_type=ResourceType.FILE.value,
            resource_id=file_id,
            restored_ids=restored,
            renamed_ids=renamed,
        )

    async def restore_folder(self, folder_id: str) -> RestoreResult:
        """Restore a folder and everything its deletion batch stamped."""
        item = await self._folders.get_item(folder_id)
        folder = FolderRecord.model_validate(item.data)
        if folder.lifecycle_status != LifecycleStatus.DELETED or folder.deleted_at is None:
            raise PreconditionFailedError(
                f"Folder {folder_id} is {folder.lifecycle_status.value}, not deleted",
                public_message="Folder is not in trash",
            )
        if folder.parent_id is not None:
            await self._require_active_parent(folder.parent_id)

        stamp = ensure_aware(folder.deleted_at)
        descendants = await self._folders.collect_descendants(folder_id)
        folder_ids = {folder_id} | {d.id for _, d in descendants}
        files = await self._folders.files_in_folders(folder_ids)
        batch: list[tuple[StoredItem, Record]] = [
            (i, r) for i, r in [*descendants, *files] if _in_batch(r, stamp)
        ]
        restored, renamed = await self._restore_all([(item, folder), *batch], stamp, primary_id=folder_id)

        logger.info(
            "Restored folder %s with %d item(s), %d name(s) repaired",
            folder_id,
            len(restored),
            len(renamed),
        )
        return RestoreResult(
            message="Folder restored successfully",
            resource_type=ResourceType.FOLDER.value,
            resource_id=folder_id,
            restored_ids=restored,
            renamed_ids=renamed,
        )

    async def _require_active_parent(self, folder_id: str) -> None:
        try:
            parent = await self._folders.get_folder(folder_id)
        except NotFoundError as exc:
            raise PreconditionFailedError(
                f"Parent folder {folder_id} no longer exists",
                public_message="The containing folder no longer exists",
            ) from exc
        if not parent.is_active:
            raise PreconditionFailedError(
                f"Parent folder {folder_id} is {parent.lifecycle_status.value}",
                public_message="Restore the containing folder first",
            )

    async def _restore_all(
        self,
        targets: list[tuple[StoredItem, Record]],
        stamp: datetime,
        *,
        primary_id: str,
    ) -> tuple[list[str], list[str]]:
        """Restore *targets* in order.  Failing to restore *primary_id* raises."""
        restored: list[str] = []
        renamed: list[str] = []
        failed: list[str] = []
        now = self._clock()
        for item, record in targets:
            try:
                updated = await self._transition(item, type(record), _restore(stamp, now))
            except (StoreUnavailableError, ConflictError):
                if record.id == primary_id:
                    raise
                logger.warning("Failed to restore %s", record.id, exc_info=True)
                failed.append(record.id)
                continue
            if updated is None:
                if record.id == primary_id:
                    raise PreconditionFailedError(
                        f"{record.id} changed state during restore",
                        public_message="Item is not in trash",
                    )
                continue
            restored.append(record.id)
            if isinstance(record, FileRecord) and updated.name != record.name:
                renamed.append(record.id)
        if failed:
            raise PartialFailureError(
                f"Restored {len(restored)} item(s); {len(failed)} failed",
                applied=restored,
                failed=failed,
            )
        return restored, renamed

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_trash(self) -> ListTrashResult:
        entries: list[TrashEntry] = []
        for item in await self._store.query_partition(FILES_PARTITION, FILE_PREFIX):
            record = FileRecord.model_validate(item.data)
            if record.lifecycle_status == LifecycleStatus.DELETED:
                entries.append(
                    TrashEntry(
                        resource_type=ResourceType.FILE.value,
                        id=record.id,
                        name=record.name,
                        deleted_at=record.deleted_at,
                        deleted_by=record.deleted_by,
                        scheduled_deletion_at=record.scheduled_deletion_at,
                        original_name=record.original_name,
                        version=record.version,
                        size=record.size,
                    )
                )
        for item in await self._store.query_partition(FOLDERS_PARTITION, FOLDER_PREFIX):
            folder = FolderRecord.model_validate(item.data)
            if folder.lifecycle_status == LifecycleStatus.DELETED:
                entries.append(
                    TrashEntry(
                        resource_type=ResourceType.FOLDER.value,
                        id=folder.id,
                        name=folder.name,
                        deleted_at=folder.deleted_at,
                        deleted_by=folder.deleted_by,
                        scheduled_deletion_at=folder.scheduled_deletion_at,
                    )
                )
        entries.sort(
            key=lambda e: ensure_aware(e.deleted_at) if e.deleted_at else self._clock(),
            reverse=True,
        )
        return ListTrashResult(entries=entries)

    # ------------------------------------------------------------------
    # Permanent delete
    # ------------------------------------------------------------------

    async def permanently_delete_file(self, file_id: str) -> DeleteResult:
        """Purge a trashed file container now instead of at its deadline."""
        item = await self._versions.get_file_item(file_id)
        record = FileRecord.model_validate(item.data)
        if record.lifecycle_status != LifecycleStatus.DELETED or record.deleted_at is None:
            raise PreconditionFailedError(
                f"File {file_id} is {record.lifecycle_status.value}, not deleted",
                public_message="Only files in trash can be permanently deleted",
            )
        stamp = ensure_aware(record.deleted_at)
        batch = [
            (i, FileRecord.model_validate(i.data))
            for i in await self._versions.lineage_items(record.lineage_key)
        ]
        targets = [(i, r) for i, r in batch if _in_batch(r, stamp)]

        now = self._clock()
        purged: list[str] = []
        for target, member in targets:
            if await self._transition(target, FileRecord, _purge(now, expired_only=False)):
                purged.append(member.id)
                await self._release_blob(member)

        logger.info("Permanently deleted file container %s: %d version(s)", record.lineage_key, len(purged))
        return DeleteResult(
            message="File permanently deleted",
            resource_type=ResourceType.FILE.value,
            resource_id=file_id,
            total_deleted=len(purged),
            deleted_ids=purged,
            permanent=True,
        )

    async def permanently_delete_folder(self, folder_id: str) -> DeleteResult:
        """Purge a trashed folder and the items its deletion batch stamped."""
        item = await self._folders.get_item(folder_id)
        folder = FolderRecord.model_validate(item.data)
        if folder.lifecycle_status != LifecycleStatus.DELETED or folder.deleted_at is None:
            raise PreconditionFailedError(
                f"Folder {folder_id} is {folder.lifecycle_status.value}, not deleted",
                public_message="Only folders in trash can be permanently deleted",
            )
        stamp = ensure_aware(folder.deleted_at)
        descendants = await self._folders.collect_descendants(folder_id)
        folder_ids = {folder_id} | {d.id for _, d in descendants}
        files = await self._folders.files_in_folders(folder_ids)

        now = self._clock()
        mutate = _purge(now, expired_only=False)
        purged: list[str] = []
        for target, record in [*files, *descendants, (item, folder)]:
            if not _in_batch(record, stamp):
                continue
            if await self._transition(target, type(record), mutate):
                purged.append(record.id)
                if isinstance(record, FileRecord):
                    await self._release_blob(record)

        logger.info("Permanently deleted folder %s with %d item(s)", folder_id, len(purged))
        return DeleteResult(
            message="Folder permanently deleted",
            resource_type=ResourceType.FOLDER.value,
            resource_id=folder_id,
            total_deleted=len(purged),
            deleted_ids=purged,
            permanent=True,
        )

    # ------------------------------------------------------------------
    # Purge sweep
    # ------------------------------------------------------------------

    async def run_purge_sweep(self, now: datetime | None = None) -> PurgeResult:
        """Permanently delete every trashed item whose deadline has passed.

        Safe to run concurrently with itself: each flip re-checks the
        record's state under compare-and-swap.  Items that fail are left
        for the next sweep.
        """
        now = now or self._clock()
        result = PurgeResult(ran_at=now)
        mutate = _purge(now, expired_only=True)

        scopes: list[tuple[str, str, type[Record]]] = [
            (FILES_PARTITION, FILE_PREFIX, FileRecord),
            (FOLDERS_PARTITION, FOLDER_PREFIX, FolderRecord),
        ]
        for partition, prefix, model in scopes:
            for item in await self._store.query_partition(partition, prefix):
                record = model.model_validate(item.data)
                if not _is_expired(record, now):
                    continue
                try:
                    if not await self._transition(item, model, mutate):
                        continue
                except (StoreUnavailableError, ConflictError):
                    logger.warning("Purge of %s failed; will retry next sweep", record.id, exc_info=True)
                    continue
                result.purged_ids.append(record.id)
                if isinstance(record, FileRecord):
                    result.files_purged += 1
                    if await self._release_blob(record):
                        result.blobs_released += 1
                else:
                    result.folders_purged += 1

        logger.info(
            "Purge sweep: %d file(s), %d folder(s), %d blob(s) released",
            result.files_purged,
            result.folders_purged,
            result.blobs_released,
        )
        return result

    async def _release_blob(self, record: FileRecord) -> bool:
        if self._blobs is None or not self._config.release_blobs or not record.storage_path:
            return False
        try:
            return await self._blobs.delete_blob(record.storage_path)
        except FileKeepError:
            logger.warning("Failed to release blob %s for %s", record.storage_path, record.id, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Compare-and-swap transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        item: StoredItem,
        model: type[Record],
        mutate: Callable[[Any], bool],
    ) -> Any | None:
        """Apply *mutate* to the record under compare-and-swap.

        *mutate* returns False when the record is not in a state it
        applies to; the transition is then skipped and None returned.
        """
        for _ in range(self._config.write_retry_limit):
            record = model.model_validate(item.data)
            if not mutate(record):
                return None
            try:
                await self._store.put(
                    item.key,
                    record.model_dump(mode="json"),
                    index_key=item.index_key,
                    if_revision=item.revision,
                )
            except ConditionFailedError:
                fresh = await self._store.get(item.key)
                if fresh is None:
                    return None
                item = fresh
                continue
            return record
        raise ConflictError(
            f"Gave up updating {item.key.sort} after {self._config.write_retry_limit} conflicts",
            public_message="Item is being modified concurrently; retry",
        )


# =============================================================================
# Transition functions
# =============================================================================


def _stamp(deleted_by: str, deleted_at: datetime, deadline: datetime) -> Callable[[Any], bool]:
    def mutate(record: Any) -> bool:
        if record.lifecycle_status != LifecycleStatus.ACTIVE:
            return False
        record.lifecycle_status = LifecycleStatus.DELETED
        record.deleted_at = deleted_at
        record.deleted_by = deleted_by
        record.scheduled_deletion_at = deadline
        record.updated_at = deleted_at
        return True

    return mutate


def _restore(stamp: datetime, now: datetime) -> Callable[[Any], bool]:
    def mutate(record: Any) -> bool:
        if not _in_batch(record, stamp):
            return False
        record.lifecycle_status = LifecycleStatus.ACTIVE
        record.deleted_at = None
        record.deleted_by = None
        record.scheduled_deletion_at = None
        record.updated_at = now
        if isinstance(record, FileRecord):
            repaired = repaired_display_name(record.name, record.original_name)
            if repaired is not None:
                record.name = repaired
        return True

    return mutate


def _purge(now: datetime, *, expired_only: bool) -> Callable[[Any], bool]:
    def mutate(record: Any) -> bool:
        if record.lifecycle_status != LifecycleStatus.DELETED:
            return False
        if expired_only and not _is_expired(record, now):
            return False
        record.lifecycle_status = LifecycleStatus.PERMANENTLY_DELETED
        record.purged_at = now
        record.updated_at = now
        return True

    return mutate


def _in_batch(record: Record, stamp: datetime) -> bool:
    return (
        record.lifecycle_status == LifecycleStatus.DELETED
        and record.deleted_at is not None
        and ensure_aware(record.deleted_at) == stamp
    )


def _is_expired(record: Record, now: datetime) -> bool:
    return (
        record.lifecycle_status == LifecycleStatus.DELETED
        and record.scheduled_deletion_at is not None
        and ensure_aware(record.scheduled_deletion_at) < now
    )


def _require_actor(deleted_by: str) -> None:
    if not deleted_by:
        raise InvalidArgumentError("Deleting user is required")
