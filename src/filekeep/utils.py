"""Lineage keys, version labels, name repair and time helpers."""

from __future__ import annotations

import hashlib
import json
import posixpath
import re
from datetime import UTC, datetime

# =============================================================================
# Time
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite and JSON round-trips drop tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# =============================================================================
# Lineage
# =============================================================================


def lineage_key_for(
    original_name: str,
    project_id: str | None = None,
    task_id: str | None = None,
    parent_folder_id: str | None = None,
) -> str:
    """Return the opaque lineage key for a filename within a scope.

    Uploads with the same original filename in the same
    (project, task, folder) scope share one key.  The key is a digest so
    it is safe to embed in store sort keys whatever the filename holds.
    """
    scope = [
        project_id or "",
        task_id or "",
        parent_folder_id or "",
        original_name.strip(),
    ]
    digest = hashlib.sha256(json.dumps(scope).encode()).hexdigest()
    return digest[:40]


# =============================================================================
# Version labels
# =============================================================================

_VERSION_RE = re.compile(r"^\s*[vV]?(\d+)(?:\.(\d+))?")


def format_version(number: int) -> str:
    return f"{number}.0"


def parse_version(label: str | None) -> tuple[int, int]:
    """Parse ``"2.0"`` / ``"v3"`` into a sortable ``(major, minor)`` tuple.

    Unparseable labels sort before every real version.
    """
    if not label:
        return (0, 0)
    match = _VERSION_RE.match(label)
    if not match:
        return (0, 0)
    return int(match.group(1)), int(match.group(2) or 0)


# =============================================================================
# Names
# =============================================================================

_HASH_NAME_RE = re.compile(r"^[a-f0-9]{32}$")


def is_hash_name(name: str | None) -> bool:
    """True when *name* looks like a 32-char hex storage hash, not a filename."""
    return bool(name) and _HASH_NAME_RE.match(name) is not None


def repaired_display_name(name: str, original_name: str | None) -> str | None:
    """Return *original_name* if *name* was corrupted into a hash, else None."""
    if not original_name or name == original_name:
        return None
    if is_hash_name(name) and "." in original_name:
        return original_name
    return None


def file_format(original_name: str) -> str | None:
    """Lower-cased extension including the dot, or None."""
    ext = posixpath.splitext(original_name)[1]
    return ext.lower() or None


def normalize_blob_path(path: str) -> str:
    """Normalize a blob path to a relative POSIX path without ``..`` segments."""
    if not path or "\x00" in path:
        raise ValueError(f"Invalid blob path: {path!r}")
    normalized = posixpath.normpath("/" + path.replace("\\", "/")).lstrip("/")
    if not normalized or normalized == ".":
        raise ValueError(f"Invalid blob path: {path!r}")
    return normalized
