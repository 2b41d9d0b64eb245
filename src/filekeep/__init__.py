"""filekeep: versioned file containers, recoverable trash and shareable links.

Uploads sharing a filename within one scope form a version lineage,
deleted files wait out a retention window in trash before they are
purged, and token links grant bounded access to files and folders.
"""

__version__ = "0.1.0"

from filekeep.config import LifecycleConfig
from filekeep.directories import FolderService
from filekeep.engine import FileLifecycleEngine
from filekeep.exceptions import (
    ConditionFailedError,
    ConflictError,
    ErrorKind,
    FileKeepError,
    InvalidArgumentError,
    LinkAccessError,
    NotFoundError,
    PartialFailureError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from filekeep.models import (
    FileRecord,
    FolderRecord,
    LifecycleStatus,
    LineageRecord,
    LinkPermission,
    ResourceType,
    ShareableLinkRecord,
    VersionStatus,
)
from filekeep.scheduler import PurgeScheduler
from filekeep.sharing import UNSET, LinkCache, ShareableLinkManager
from filekeep.store import (
    BlobStore,
    DatabaseDocumentStore,
    DocumentStore,
    ItemKey,
    LocalBlobStore,
    MemoryDocumentStore,
    StoredItem,
    create_tables,
)
from filekeep.tasks import BackgroundTasks
from filekeep.trash import TrashManager
from filekeep.types import (
    DeleteResult,
    LinkInfo,
    ListLinksResult,
    ListTrashResult,
    ListVersionsResult,
    PurgeResult,
    ResolvedLink,
    RestoreResult,
    TrashEntry,
    UploadRequest,
    UploadResult,
    VersionInfo,
)
from filekeep.utils import lineage_key_for
from filekeep.versioning import (
    IndexedLineageLookup,
    LineageLookup,
    ScanLineageLookup,
    VersionManager,
)

__all__ = [
    "UNSET",
    "BackgroundTasks",
    "BlobStore",
    "ConditionFailedError",
    "ConflictError",
    "DatabaseDocumentStore",
    "DeleteResult",
    "DocumentStore",
    "ErrorKind",
    "FileKeepError",
    "FileLifecycleEngine",
    "FileRecord",
    "FolderRecord",
    "FolderService",
    "IndexedLineageLookup",
    "InvalidArgumentError",
    "ItemKey",
    "LifecycleConfig",
    "LifecycleStatus",
    "LineageLookup",
    "LineageRecord",
    "LinkAccessError",
    "LinkCache",
    "LinkInfo",
    "LinkPermission",
    "ListLinksResult",
    "ListTrashResult",
    "ListVersionsResult",
    "LocalBlobStore",
    "MemoryDocumentStore",
    "NotFoundError",
    "PartialFailureError",
    "PreconditionFailedError",
    "PurgeResult",
    "PurgeScheduler",
    "ResolvedLink",
    "ResourceType",
    "RestoreResult",
    "ScanLineageLookup",
    "ShareableLinkManager",
    "ShareableLinkRecord",
    "StoreUnavailableError",
    "StoredItem",
    "TrashEntry",
    "TrashManager",
    "UploadRequest",
    "UploadResult",
    "VersionInfo",
    "VersionManager",
    "VersionStatus",
    "create_tables",
    "lineage_key_for",
]
