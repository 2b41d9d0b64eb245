"""MemoryDocumentStore — process-local document store."""

from __future__ import annotations

import copy
import json
from typing import TYPE_CHECKING, Any

from filekeep.exceptions import ConditionFailedError, InvalidArgumentError

from .protocol import ItemKey, StoredItem

if TYPE_CHECKING:
    from collections.abc import Callable


class MemoryDocumentStore:
    """In-process ``DocumentStore`` for development and tests.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.  Documents are
    deep-copied on the way in and out so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._items: dict[ItemKey, StoredItem] = {}

    async def open(self) -> None:
        """No-op — nothing to connect to."""

    async def close(self) -> None:
        """No-op — nothing to release."""

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
    ) -> int:
        key = ItemKey(*key)
        _check_serializable(data)
        existing = self._items.get(key)
        current = existing.revision if existing else 0
        if if_revision is not None and if_revision != current:
            raise ConditionFailedError(
                f"Revision mismatch for {key.partition}/{key.sort}: "
                f"expected {if_revision}, found {current}"
            )
        revision = current + 1
        self._items[key] = StoredItem(
            key=key,
            data=copy.deepcopy(data),
            revision=revision,
            index_key=index_key,
        )
        return revision

    async def get(self, key: ItemKey) -> StoredItem | None:
        item = self._items.get(ItemKey(*key))
        return _copy(item) if item else None

    async def delete(self, key: ItemKey) -> bool:
        return self._items.pop(ItemKey(*key), None) is not None

    # ------------------------------------------------------------------
    # Multi-item access
    # ------------------------------------------------------------------

    async def query_partition(self, partition: str, sort_prefix: str = "") -> list[StoredItem]:
        matches = [
            _copy(item)
            for key, item in self._items.items()
            if key.partition == partition and key.sort.startswith(sort_prefix)
        ]
        matches.sort(key=lambda item: item.key.sort)
        return matches

    async def query_index(self, index_key: str) -> list[StoredItem]:
        matches = [_copy(item) for item in self._items.values() if item.index_key == index_key]
        matches.sort(key=lambda item: item.key)
        return matches

    async def scan(self, predicate: Callable[[StoredItem], bool]) -> list[StoredItem]:
        items = [_copy(item) for item in self._items.values()]
        return [item for item in items if predicate(item)]

    def __len__(self) -> int:
        return len(self._items)


def _copy(item: StoredItem) -> StoredItem:
    return StoredItem(
        key=item.key,
        data=copy.deepcopy(item.data),
        revision=item.revision,
        index_key=item.index_key,
    )


def _check_serializable(data: dict[str, Any]) -> None:
    # Same contract as the database backend: documents must be JSON.
    try:
        json.dumps(data)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Document is not JSON-serializable: {e}") from e
