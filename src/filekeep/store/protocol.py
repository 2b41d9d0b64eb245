"""Store protocols — the narrow interface every backend implements.

``DocumentStore`` models a partitioned key-value document store with a
single secondary index.  ``BlobStore`` models an opaque content store.
The managers depend only on these protocols, never on a concrete backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable


class ItemKey(NamedTuple):
    """Composite key: partition plus sort key."""

    partition: str
    sort: str


@dataclass
class StoredItem:
    """A document read back from a store, with its revision."""

    key: ItemKey
    data: dict[str, Any]
    revision: int
    index_key: str | None = None


@runtime_checkable
class DocumentStore(Protocol):
    """Core interface every document backend must implement.

    Writes are last-write-wins unless ``if_revision`` is given:

    - ``if_revision=0``: create only if the key is absent.
    - ``if_revision=n``: replace only if the stored revision is ``n``.

    A failed condition raises ``ConditionFailedError``.  Backend I/O
    failures raise ``StoreUnavailableError``.
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Called at engine start.  No-op if not needed."""
        ...

    async def close(self) -> None:
        """Called on shutdown."""
        ...

    # ------------------------------------------------------------------
    # Single-item access
    # ------------------------------------------------------------------

    async def put(
        self,
        key: ItemKey,
        data: dict[str, Any],
        *,
        index_key: str | None = None,
        if_revision: int | None = None,
    ) -> int: ...

    async def get(self, key: ItemKey) -> StoredItem | None: ...

    async def delete(self, key: ItemKey) -> bool: ...

    # ------------------------------------------------------------------
    # Multi-item access
    # ------------------------------------------------------------------

    async def query_partition(
        self,
        partition: str,
        sort_prefix: str = "",
    ) -> list[StoredItem]: ...

    async def query_index(self, index_key: str) -> list[StoredItem]: ...

    async def scan(
        self,
        predicate: Callable[[StoredItem], bool],
    ) -> list[StoredItem]: ...


@runtime_checkable
class BlobStore(Protocol):
    """Opaque content storage addressed by path."""

    async def put_blob(self, path: str, data: bytes, content_type: str) -> None: ...

    async def get_blob(self, path: str) -> bytes: ...

    async def delete_blob(self, path: str) -> bool: ...

    async def get_signed_url(self, path: str, ttl: int) -> str: ...
