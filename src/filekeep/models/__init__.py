"""SQLModel document models for filekeep."""

from filekeep.models.files import FileRecord, LineageRecord
from filekeep.models.folders import FolderRecord
from filekeep.models.links import ShareableLinkRecord, generate_token
from filekeep.models.status import (
    LifecycleStatus,
    LinkPermission,
    ResourceType,
    VersionStatus,
)
from filekeep.models.store import StoreItem, StoreItemBase

__all__ = [
    "FileRecord",
    "FolderRecord",
    "LifecycleStatus",
    "LineageRecord",
    "LinkPermission",
    "ResourceType",
    "ShareableLinkRecord",
    "StoreItem",
    "StoreItemBase",
    "VersionStatus",
    "generate_token",
]
