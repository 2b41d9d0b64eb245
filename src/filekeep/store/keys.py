"""Key layout for every record kind kept in a ``DocumentStore``."""

from __future__ import annotations

from filekeep.models.status import ResourceType

from .protocol import ItemKey

FILES_PARTITION = "FILES"
FOLDERS_PARTITION = "FOLDERS"
LINKS_PARTITION = "SHAREABLE_LINKS"
LINEAGES_PARTITION = "LINEAGES"

FILE_PREFIX = "FILE#"
FOLDER_PREFIX = "FOLDER#"
LINK_PREFIX = "LINK#"
LINEAGE_PREFIX = "LINEAGE#"

ROOT_PARENT = "ROOT"


def file_key(file_id: str) -> ItemKey:
    return ItemKey(FILES_PARTITION, f"{FILE_PREFIX}{file_id}")


def folder_key(folder_id: str) -> ItemKey:
    return ItemKey(FOLDERS_PARTITION, f"{FOLDER_PREFIX}{folder_id}")


def link_key(token: str) -> ItemKey:
    return ItemKey(LINKS_PARTITION, f"{LINK_PREFIX}{token}")


def lineage_head_key(lineage_key: str) -> ItemKey:
    return ItemKey(LINEAGES_PARTITION, f"{LINEAGE_PREFIX}{lineage_key}")


def lineage_index(lineage_key: str) -> str:
    """Secondary index value grouping the file records of one lineage."""
    return f"{LINEAGE_PREFIX}{lineage_key}"


def parent_index(parent_id: str | None) -> str:
    """Secondary index value grouping the subfolders of one folder."""
    return f"PARENT#{parent_id or ROOT_PARENT}"


def resource_index(resource_type: ResourceType | str, resource_id: str) -> str:
    """Secondary index value grouping the links of one resource."""
    value = resource_type.value if isinstance(resource_type, ResourceType) else resource_type
    return f"{value.upper()}#{resource_id}"
