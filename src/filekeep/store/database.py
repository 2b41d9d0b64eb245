"""DatabaseDocumentStore — document store over one SQL table.

Each operation opens its own session from the injected factory and
commits before returning.  Conditional writes compile to a single
``INSERT`` or ``UPDATE ... WHERE revision = :n`` statement, so the
compare-and-swap is decided by the database, not by this process.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from filekeep.exceptions import ConditionFailedError, FileKeepError, StoreUnavailableError

from .protocol import ItemKey, StoredItem

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from filekeep.models.store import StoreItemBase

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine) -> None:
    """Create every filekeep table on *engine* (idempotent)."""
    import filekeep.models.store  # noqa: F401  (registers the table)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


class DatabaseDocumentStore:
    """SQL-backed ``DocumentStore``.

    Works with any async SQLAlchemy dialect (``sqlite+aiosqlite``,
    ``postgresql+asyncpg``...).  Holds only a session factory and the item
    model; safe for concurrent use from multiple requests.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        item_model: type[StoreItemBase] | None = None,
    ) -> None:
        from filekeep.models.store import StoreItem

        self._session_factory = session_factory
        self._item_model: type[StoreItemBase] = item_model or StoreItem  # type: ignore[assignment]

    @classmethod
    def from_engine(
        cls,
        engine: AsyncEngine,
        item_model: type[StoreItemBase] | None = None,
    ) -> DatabaseDocumentStore:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, item_model)

    @property
    def item_model(self) -> type[StoreItemBase]:
        return self._item_model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """No-op — sessions are opened per operation."""

    async def close(self) -> None:
        """No-op — the engine is owned by the caller."""

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except FileKeepError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store %s failed: %s", operation, e, exc_info=True)
            raise StoreUnavailableError(f"Store {operation} failed: {e}") from e

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
        if if_revision is None:
            return await self._upsert(key, data, index_key)
        if if_revision == 0:
            return await self._insert(key, data, index_key)
        return await self._replace(key, data, index_key, if_revision)

    async def _insert(self, key: ItemKey, data: dict[str, Any], index_key: str | None) -> int:
        async with self._session("put") as session:
            session.add(
                self._item_model(
                    partition=key.partition,
                    sort=key.sort,
                    index_key=index_key,
                    revision=1,
                    data=data,
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConditionFailedError(
                    f"Item already exists: {key.partition}/{key.sort}"
                ) from e
        return 1

    async def _replace(
        self,
        key: ItemKey,
        data: dict[str, Any],
        index_key: str | None,
        if_revision: int,
    ) -> int:
        model = self._item_model
        async with self._session("put") as session:
            result = await session.execute(
                sa_update(model)
                .where(
                    model.partition == key.partition,  # type: ignore[arg-type]
                    model.sort == key.sort,  # type: ignore[arg-type]
                    model.revision == if_revision,  # type: ignore[arg-type]
                )
                .values(
                    data=data,
                    index_key=index_key,
                    revision=if_revision + 1,
                    updated_at=datetime.now(UTC),
                )
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConditionFailedError(
                    f"Revision mismatch for {key.partition}/{key.sort}: expected {if_revision}"
                )
            await session.commit()
        return if_revision + 1

    async def _upsert(self, key: ItemKey, data: dict[str, Any], index_key: str | None) -> int:
        # Select-then-write; a concurrent insert of the same key surfaces
        # as IntegrityError and the second pass takes the update branch.
        for attempt in range(2):
            row = await self._load(key)
            if row is None:
                try:
                    return await self._insert(key, data, index_key)
                except ConditionFailedError:
                    if attempt:
                        raise
                    continue
            try:
                return await self._replace(key, data, index_key, row.revision)
            except ConditionFailedError:
                if attempt:
                    raise
        raise ConditionFailedError(f"Could not write {key.partition}/{key.sort}")

    async def _load(self, key: ItemKey) -> StoreItemBase | None:
        model = self._item_model
        async with self._session("get") as session:
            result = await session.execute(
                select(model).where(
                    model.partition == key.partition,
                    model.sort == key.sort,
                )
            )
            return result.scalar_one_or_none()

    async def get(self, key: ItemKey) -> StoredItem | None:
        row = await self._load(ItemKey(*key))
        return _to_item(row) if row is not None else None

    async def delete(self, key: ItemKey) -> bool:
        key = ItemKey(*key)
        model = self._item_model
        async with self._session("delete") as session:
            result = await session.execute(
                select(model).where(
                    model.partition == key.partition,
                    model.sort == key.sort,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    # ------------------------------------------------------------------
    # Multi-item access
    # ------------------------------------------------------------------

    async def query_partition(self, partition: str, sort_prefix: str = "") -> list[StoredItem]:
        model = self._item_model
        conditions = [model.partition == partition]
        if sort_prefix:
            conditions.append(
                model.sort.startswith(sort_prefix, autoescape=True)  # type: ignore[union-attr]
            )
        async with self._session("query") as session:
            result = await session.execute(
                select(model).where(*conditions).order_by(model.sort)  # type: ignore[arg-type]
            )
            return [_to_item(row) for row in result.scalars().all()]

    async def query_index(self, index_key: str) -> list[StoredItem]:
        model = self._item_model
        async with self._session("query_index") as session:
            result = await session.execute(
                select(model)
                .where(model.index_key == index_key)
                .order_by(model.partition, model.sort)  # type: ignore[arg-type]
            )
            return [_to_item(row) for row in result.scalars().all()]

    async def scan(self, predicate: Callable[[StoredItem], bool]) -> list[StoredItem]:
        model = self._item_model
        async with self._session("scan") as session:
            result = await session.execute(select(model))
            items = [_to_item(row) for row in result.scalars().all()]
        return [item for item in items if predicate(item)]


def _to_item(row: StoreItemBase) -> StoredItem:
    return StoredItem(
        key=ItemKey(row.partition, row.sort),
        data=dict(row.data or {}),
        revision=row.revision,
        index_key=row.index_key,
    )
