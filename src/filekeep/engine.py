"""FileLifecycleEngine — facade wiring the version, trash and link managers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import LifecycleConfig
from .directories import FolderService
from .exceptions import InvalidArgumentError, PreconditionFailedError
from .models.status import LifecycleStatus, LinkPermission, ResourceType
from .scheduler import PurgeScheduler
from .sharing import LinkCache, ShareableLinkManager
from .store.database import DatabaseDocumentStore, create_tables
from .tasks import BackgroundTasks
from .trash import TrashManager
from .utils import utcnow
from .versioning import VersionManager

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from .models.files import FileRecord
    from .models.folders import FolderRecord
    from .store.protocol import BlobStore, DocumentStore
    from .types import (
        DeleteResult,
        LinkInfo,
        ListLinksResult,
        ListTrashResult,
        ListVersionsResult,
        PurgeResult,
        ResolvedLink,
        RestoreResult,
        UploadRequest,
        UploadResult,
    )
    from .versioning import LineageLookup

logger = logging.getLogger(__name__)


class FileLifecycleEngine:
    """Entry point for the file lifecycle: uploads, trash and shareable links.

    The store is constructed by the caller and injected; every manager
    shares it.  Nothing here performs authorization.

    In-memory usage::

        engine = FileLifecycleEngine(MemoryDocumentStore())
        result = await engine.upload_new_version(UploadRequest(...))

    Database usage::

        sql = create_async_engine("sqlite+aiosqlite:///filekeep.db")
        engine = await FileLifecycleEngine.from_engine(sql, blobs=LocalBlobStore("/srv/blobs"))
    """

    def __init__(
        self,
        store: DocumentStore,
        blobs: BlobStore | None = None,
        *,
        config: LifecycleConfig | None = None,
        lineage_lookup: LineageLookup | None = None,
        link_cache: LinkCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._config = config or LifecycleConfig()
        self._tasks = BackgroundTasks()
        self._closed = False

        self._folders = FolderService(store)
        self._versions = VersionManager(
            store,
            self._folders,
            blobs=blobs,
            tasks=self._tasks,
            config=self._config,
            lineage_lookup=lineage_lookup,
            clock=clock,
        )
        self._trash = TrashManager(
            store,
            self._versions,
            self._folders,
            blobs=blobs,
            config=self._config,
            clock=clock,
        )
        self._links = ShareableLinkManager(store, config=self._config, cache=link_cache, clock=clock)
        self._scheduler: PurgeScheduler | None = None

    @classmethod
    async def from_engine(
        cls,
        engine: AsyncEngine,
        blobs: BlobStore | None = None,
        **kwargs: Any,
    ) -> FileLifecycleEngine:
        """Create tables on *engine* and build an engine over a database store."""
        await create_tables(engine)
        instance = cls(DatabaseDocumentStore.from_engine(engine), blobs, **kwargs)
        await instance.open()
        return instance

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await self._store.open()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.stop_purge_scheduler()
        await self._tasks.drain()
        await self._store.close()

    async def __aenter__(self) -> FileLifecycleEngine:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def wait_for_background(self) -> None:
        """Wait for pending background work such as supersede updates."""
        await self._tasks.drain()

    def start_purge_scheduler(self, interval_seconds: float | None = None) -> PurgeScheduler:
        if self._scheduler is None:
            self._scheduler = PurgeScheduler(
                self._trash,
                interval_seconds or self._config.purge_interval_seconds,
            )
        self._scheduler.start()
        return self._scheduler

    async def stop_purge_scheduler(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        name: str,
        created_by: str,
        *,
        parent_id: str | None = None,
        project_id: str | None = None,
    ) -> FolderRecord:
        return await self._folders.create_folder(
            name, created_by, parent_id=parent_id, project_id=project_id
        )

    async def get_folder(self, folder_id: str) -> FolderRecord:
        return await self._folders.get_folder(folder_id)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def upload_new_version(
        self,
        request: UploadRequest,
        content: bytes | None = None,
    ) -> UploadResult:
        return await self._versions.upload_new_version(request, content)

    async def list_versions(
        self,
        lineage_key: str,
        *,
        include_deleted: bool = False,
    ) -> ListVersionsResult:
        return await self._versions.list_versions(lineage_key, include_deleted=include_deleted)

    async def list_versions_for_file(
        self,
        file_id: str,
        *,
        include_deleted: bool = False,
    ) -> ListVersionsResult:
        return await self._versions.list_versions_for_file(file_id, include_deleted=include_deleted)

    async def get_file(self, file_id: str) -> FileRecord:
        return await self._versions.get_file(file_id)

    async def get_current_version(self, lineage_key: str) -> FileRecord | None:
        return await self._versions.get_current_version(lineage_key)

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def soft_delete_file_container(self, file_id: str, deleted_by: str) -> DeleteResult:
        return await self._trash.soft_delete_file_container(file_id, deleted_by)

    async def soft_delete_lineage(self, lineage_key: str, deleted_by: str) -> DeleteResult:
        return await self._trash.soft_delete_lineage(lineage_key, deleted_by)

    async def soft_delete_folder(self, folder_id: str, deleted_by: str) -> DeleteResult:
        return await self._trash.soft_delete_folder(folder_id, deleted_by)

    async def restore_file(self, file_id: str) -> RestoreResult:
        return await self._trash.restore_file(file_id)

    async def restore_folder(self, folder_id: str) -> RestoreResult:
        return await self._trash.restore_folder(folder_id)

    async def list_trash(self) -> ListTrashResult:
        return await self._trash.list_trash()

    async def permanently_delete_file(self, file_id: str) -> DeleteResult:
        return await self._trash.permanently_delete_file(file_id)

    async def permanently_delete_folder(self, folder_id: str) -> DeleteResult:
        return await self._trash.permanently_delete_folder(folder_id)

    async def run_purge_sweep(self, now: datetime | None = None) -> PurgeResult:
        return await self._trash.run_purge_sweep(now)

    # ------------------------------------------------------------------
    # Shareable links
    # ------------------------------------------------------------------

    async def create_link(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        **options: Any,
    ) -> LinkInfo:
        return await self._links.create_link(resource_type, resource_id, **options)

    async def get_link(self, token: str) -> LinkInfo:
        return await self._links.get_link(token)

    async def list_links_for_resource(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
    ) -> ListLinksResult:
        return await self._links.list_links_for_resource(resource_type, resource_id)

    async def resolve_link(self, token: str, password: str | None = None) -> ResolvedLink:
        return await self._links.resolve_link(token, password)

    async def update_link(self, token: str, **changes: Any) -> LinkInfo:
        unknown = set(changes) - _UPDATABLE_LINK_FIELDS
        if unknown:
            raise InvalidArgumentError(f"Unknown link field(s): {', '.join(sorted(unknown))}")
        return await self._links.update_link(token, **changes)

    async def delete_link(self, token: str) -> None:
        await self._links.delete_link(token)

    async def get_download_url(self, token: str, password: str | None = None) -> str:
        """Resolve a download link and return a signed URL for the file's content.

        Counts as one use of the link.
        """
        if self._blobs is None:
            raise PreconditionFailedError(
                "No blob store configured",
                public_message="Downloads are not available",
            )
        link = await self._links.get_link(token)
        if link.resource_type != ResourceType.FILE.value:
            raise InvalidArgumentError("Only file links can be downloaded")
        if link.permission == LinkPermission.VIEW.value:
            raise PreconditionFailedError(
                f"Link {token} grants view only",
                public_message="This link does not allow downloads",
            )
        record = await self._versions.get_file(link.resource_id)
        if record.lifecycle_status != LifecycleStatus.ACTIVE:
            raise PreconditionFailedError(
                f"File {record.id} is {record.lifecycle_status.value}",
                public_message="File is no longer available",
            )
        resolved = await self._links.resolve_link(token, password)
        logger.debug("Issuing download URL for %s via link %s", resolved.resource_id, token)
        return await self._blobs.get_signed_url(
            record.storage_path, self._config.signed_url_ttl_seconds
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def blobs(self) -> BlobStore | None:
        return self._blobs

    @property
    def versions(self) -> VersionManager:
        return self._versions

    @property
    def trash(self) -> TrashManager:
        return self._trash

    @property
    def links(self) -> ShareableLinkManager:
        return self._links

    @property
    def folders(self) -> FolderService:
        return self._folders

    @property
    def background(self) -> BackgroundTasks:
        return self._tasks


_UPDATABLE_LINK_FIELDS = frozenset(
    {"permission", "is_public", "password", "expires_at", "max_uses", "is_active", "metadata"}
)
