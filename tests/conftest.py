"""Shared fixtures for filekeep tests."""

from __future__ import annotations

import asyncio
import inspect
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from filekeep.config import LifecycleConfig
from filekeep.engine import FileLifecycleEngine
from filekeep.exceptions import StoreUnavailableError
from filekeep.store.blobs import LocalBlobStore
from filekeep.store.database import DatabaseDocumentStore, create_tables
from filekeep.store.memory import MemoryDocumentStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from filekeep.store.protocol import ItemKey


class FrozenClock:
    """Injectable wall clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class YieldingStore:
    """Wraps a store and yields to the event loop before every call.

    Lets ``asyncio.gather`` interleave coroutines the way a networked
    store would.
    """

    def __init__(self, inner: Any) -> None:
        self.inner = inner

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def _call(*args: Any, **kwargs: Any) -> Any:
            await asyncio.sleep(0)
            result = await attr(*args, **kwargs)
            await asyncio.sleep(0)
            return result

        return _call


class FailingStore:
    """Wraps a store and fails puts to selected sort keys."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.fail_sorts: set[str] = set()

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)

    async def put(self, key: ItemKey, data: dict[str, Any], **kwargs: Any) -> int:
        if key.sort in self.fail_sorts:
            raise StoreUnavailableError(f"injected failure writing {key.sort}")
        return await self.inner.put(key, data, **kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 9, 30, tzinfo=UTC))


@pytest.fixture
def config() -> LifecycleConfig:
    """Default config with a cheap bcrypt cost."""
    return LifecycleConfig(password_hash_rounds=4)


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed async SQLite engine with all tables created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'filekeep.db'}", echo=False)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def database_store(async_engine: AsyncEngine) -> DatabaseDocumentStore:
    return DatabaseDocumentStore.from_engine(async_engine)


@pytest.fixture
def blob_root(tmp_path: Path) -> Path:
    root = tmp_path / "blobs"
    root.mkdir()
    return root


@pytest.fixture
def blobs(blob_root: Path) -> LocalBlobStore:
    return LocalBlobStore(blob_root, signing_key=b"test-signing-key")


@pytest.fixture
async def lifecycle(
    memory_store: MemoryDocumentStore,
    blobs: LocalBlobStore,
    config: LifecycleConfig,
    clock: FrozenClock,
) -> AsyncIterator[FileLifecycleEngine]:
    """Engine over the in-memory store with a frozen clock."""
    engine = FileLifecycleEngine(memory_store, blobs, config=config, clock=clock)
    yield engine
    await engine.close()


@pytest.fixture
def yielding_store(memory_store: MemoryDocumentStore) -> YieldingStore:
    return YieldingStore(memory_store)


@pytest.fixture
def failing_store(memory_store: MemoryDocumentStore) -> FailingStore:
    return FailingStore(memory_store)
