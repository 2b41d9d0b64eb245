"""Status and tier enums shared by the document models."""

from __future__ import annotations

from enum import Enum


class LifecycleStatus(str, Enum):
    """Trash lifecycle of a file or folder.

    ``active -> deleted -> active`` via soft-delete / restore, and
    ``deleted -> permanently_deleted`` via the purge sweep (terminal).
    """

    ACTIVE = "active"
    DELETED = "deleted"
    PERMANENTLY_DELETED = "permanently_deleted"


class VersionStatus(str, Enum):
    """Position of a file record within its lineage."""

    CURRENT = "current"
    SUPERSEDED = "superseded"


class ResourceType(str, Enum):
    """Kinds of resource a shareable link can point at."""

    FILE = "file"
    FOLDER = "folder"


class LinkPermission(str, Enum):
    """Permission tier granted by a shareable link."""

    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"
