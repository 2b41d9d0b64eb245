"""FolderService — folder creation, lookup and descendant collection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import InvalidArgumentError, NotFoundError, PreconditionFailedError
from .models.files import FileRecord
from .models.folders import FolderRecord
from .models.status import LifecycleStatus
from .store.keys import FILE_PREFIX, FILES_PARTITION, folder_key, parent_index

if TYPE_CHECKING:
    from .store.protocol import DocumentStore, StoredItem

logger = logging.getLogger(__name__)


class FolderService:
    """Folder tree operations over a ``DocumentStore``.

    Subfolders are found through the parent secondary index; files in a
    set of folders through one query of the files partition.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def create_folder(
        self,
        name: str,
        created_by: str,
        *,
        parent_id: str | None = None,
        project_id: str | None = None,
    ) -> FolderRecord:
        name = (name or "").strip()
        if not name:
            raise InvalidArgumentError("Folder name is required")
        if "/" in name:
            raise InvalidArgumentError(f"Folder name may not contain '/': {name!r}")
        if parent_id is not None:
            await self.require_active(parent_id)

        folder = FolderRecord(
            name=name,
            parent_id=parent_id,
            project_id=project_id,
            created_by=created_by,
        )
        await self._store.put(
            folder_key(folder.id),
            folder.model_dump(mode="json"),
            index_key=parent_index(parent_id),
            if_revision=0,
        )
        logger.debug("Created folder %s (%s) under %s", folder.id, name, parent_id or "root")
        return folder

    async def get_folder(self, folder_id: str) -> FolderRecord:
        item = await self.get_item(folder_id)
        return FolderRecord.model_validate(item.data)

    async def get_item(self, folder_id: str) -> StoredItem:
        if not folder_id:
            raise InvalidArgumentError("Valid folder ID required")
        item = await self._store.get(folder_key(folder_id))
        if item is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return item

    async def require_active(self, folder_id: str) -> FolderRecord:
        folder = await self.get_folder(folder_id)
        if not folder.is_active:
            raise PreconditionFailedError(
                f"Folder {folder_id} is {folder.lifecycle_status.value}"
            )
        return folder

    async def list_subfolders(self, folder_id: str | None) -> list[FolderRecord]:
        return [record for _, record in await self._subfolder_items(folder_id)]

    async def _subfolder_items(self, folder_id: str | None) -> list[tuple[StoredItem, FolderRecord]]:
        items = await self._store.query_index(parent_index(folder_id))
        return [(i, FolderRecord.model_validate(i.data)) for i in items]

    async def collect_descendants(self, folder_id: str) -> list[tuple[StoredItem, FolderRecord]]:
        """Every folder below *folder_id* at any depth, excluding purged ones.

        Iterative breadth-first walk; a corrupted tree with a cycle is
        visited once per folder.
        """
        seen = {folder_id}
        frontier = [folder_id]
        found: list[tuple[StoredItem, FolderRecord]] = []
        while frontier:
            next_frontier: list[str] = []
            for parent in frontier:
                for item, child in await self._subfolder_items(parent):
                    if child.id in seen:
                        continue
                    seen.add(child.id)
                    if child.lifecycle_status == LifecycleStatus.PERMANENTLY_DELETED:
                        continue
                    found.append((item, child))
                    next_frontier.append(child.id)
            frontier = next_frontier
        return found

    async def files_in_folders(self, folder_ids: set[str]) -> list[tuple[StoredItem, FileRecord]]:
        """File records whose parent is one of *folder_ids*."""
        items = await self._store.query_partition(FILES_PARTITION, FILE_PREFIX)
        matches = []
        for item in items:
            if item.data.get("parent_folder_id") in folder_ids:
                matches.append((item, FileRecord.model_validate(item.data)))
        return matches
