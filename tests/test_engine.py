"""End-to-end tests for FileLifecycleEngine and PurgeScheduler."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest

from filekeep.engine import FileLifecycleEngine
from filekeep.exceptions import (
    InvalidArgumentError,
    LinkAccessError,
    PreconditionFailedError,
)
from filekeep.models.status import LifecycleStatus, VersionStatus
from filekeep.scheduler import PurgeScheduler
from filekeep.store.memory import MemoryDocumentStore
from filekeep.types import PurgeResult, UploadRequest

if TYPE_CHECKING:
    from filekeep.store.blobs import LocalBlobStore


def _request(original_name: str = "plan.pdf", **overrides: Any) -> UploadRequest:
    fields: dict[str, Any] = {
        "original_name": original_name,
        "uploaded_by": "alice",
        "size": 7,
        "mime_type": "application/pdf",
        "storage_path": f"projects/p1/{uuid.uuid4().hex}",
        "project_id": "p1",
    }
    fields.update(overrides)
    return UploadRequest(**fields)


@pytest.fixture
async def db_lifecycle(async_engine, blobs, config, clock):
    """Engine over the SQLite-backed document store."""
    engine = await FileLifecycleEngine.from_engine(async_engine, blobs, config=config, clock=clock)
    yield engine
    await engine.close()


# ---------------------------------------------------------------------------
# Database backend, end to end
# ---------------------------------------------------------------------------


class TestDatabaseBackend:
    async def test_versions_supersede(self, db_lifecycle: FileLifecycleEngine):
        first = await db_lifecycle.upload_new_version(_request())
        await db_lifecycle.wait_for_background()
        second = await db_lifecycle.upload_new_version(_request())
        await db_lifecycle.wait_for_background()

        assert first.version == "1.0"
        assert second.version == "2.0"
        assert second.lineage_key == first.lineage_key
        history = await db_lifecycle.list_versions(first.lineage_key)
        assert [v.version for v in history.versions] == ["2.0", "1.0"]
        assert [v.version_status for v in history.versions] == ["current", "superseded"]

    async def test_delete_resets_container(self, db_lifecycle: FileLifecycleEngine, clock):
        first = await db_lifecycle.upload_new_version(_request())
        await db_lifecycle.upload_new_version(_request())
        await db_lifecycle.wait_for_background()

        deleted = await db_lifecycle.soft_delete_file_container(first.file.id, "bob")
        assert deleted.total_deleted == 2
        assert deleted.scheduled_deletion_at == clock.now + timedelta(days=60)

        third = await db_lifecycle.upload_new_version(_request())
        assert third.version == "1.0"
        assert third.fresh_container is True
        assert third.file.version_status == VersionStatus.CURRENT

    async def test_link_single_use(self, db_lifecycle: FileLifecycleEngine):
        link = await db_lifecycle.create_link("file", "f1", max_uses=1)
        resolved = await db_lifecycle.resolve_link(link.id)
        assert resolved.current_uses == 1
        with pytest.raises(PreconditionFailedError):
            await db_lifecycle.resolve_link(link.id)

    async def test_restore_repairs_name(self, db_lifecycle: FileLifecycleEngine):
        upload = await db_lifecycle.upload_new_version(
            _request("site-plan.dwg", name="5d41402abc4b2a76b9719d911017c592")
        )
        await db_lifecycle.soft_delete_file_container(upload.file.id, "bob")
        await db_lifecycle.restore_file(upload.file.id)
        assert (await db_lifecycle.get_file(upload.file.id)).name == "site-plan.dwg"

    async def test_folder_cascade_and_purge(self, db_lifecycle: FileLifecycleEngine, clock):
        root = await db_lifecycle.create_folder("Site", "alice", project_id="p1")
        child = await db_lifecycle.create_folder("Surveys", "alice", parent_id=root.id)
        upload = await db_lifecycle.upload_new_version(
            _request("survey.csv", parent_folder_id=child.id), b"a,b\n1,2\n"
        )

        await db_lifecycle.soft_delete_folder(root.id, "bob")
        trash = await db_lifecycle.list_trash()
        assert trash.total_folders == 2
        assert trash.total_files == 1

        clock.advance(days=61)
        result = await db_lifecycle.run_purge_sweep()

        assert result.files_purged == 1
        assert result.folders_purged == 2
        assert result.blobs_released == 1
        record = await db_lifecycle.get_file(upload.file.id)
        assert record.lifecycle_status == LifecycleStatus.PERMANENTLY_DELETED
        assert (await db_lifecycle.list_trash()).entries == []

    async def test_close_is_idempotent(self, db_lifecycle: FileLifecycleEngine):
        await db_lifecycle.close()
        await db_lifecycle.close()


# ---------------------------------------------------------------------------
# get_download_url
# ---------------------------------------------------------------------------


class TestDownloadUrl:
    async def test_signed_url_for_download_link(
        self, lifecycle: FileLifecycleEngine, blobs: LocalBlobStore
    ):
        request = _request()
        upload = await lifecycle.upload_new_version(request, b"%PDF-1")
        link = await lifecycle.create_link("file", upload.file.id, permission="download")

        url = await lifecycle.get_download_url(link.id)

        assert blobs.verify_signed_url(url) == request.storage_path
        assert (await lifecycle.get_link(link.id)).current_uses == 1

    async def test_password_protected(self, lifecycle: FileLifecycleEngine):
        upload = await lifecycle.upload_new_version(_request(), b"%PDF-1")
        link = await lifecycle.create_link(
            "file", upload.file.id, permission="download", password="open-sesame"
        )
        with pytest.raises(LinkAccessError):
            await lifecycle.get_download_url(link.id, "guess")
        assert await lifecycle.get_download_url(link.id, "open-sesame")

    async def test_view_link_cannot_download(self, lifecycle: FileLifecycleEngine):
        upload = await lifecycle.upload_new_version(_request(), b"%PDF-1")
        link = await lifecycle.create_link("file", upload.file.id)
        with pytest.raises(PreconditionFailedError):
            await lifecycle.get_download_url(link.id)
        assert (await lifecycle.get_link(link.id)).current_uses == 0

    async def test_folder_link_rejected(self, lifecycle: FileLifecycleEngine):
        folder = await lifecycle.create_folder("Drawings", "alice")
        link = await lifecycle.create_link("folder", folder.id, permission="download")
        with pytest.raises(InvalidArgumentError):
            await lifecycle.get_download_url(link.id)

    async def test_trashed_file_unavailable(self, lifecycle: FileLifecycleEngine):
        upload = await lifecycle.upload_new_version(_request(), b"%PDF-1")
        link = await lifecycle.create_link("file", upload.file.id, permission="download")
        await lifecycle.soft_delete_file_container(upload.file.id, "bob")
        with pytest.raises(PreconditionFailedError) as exc_info:
            await lifecycle.get_download_url(link.id)
        assert exc_info.value.public_message == "File is no longer available"

    async def test_requires_blob_store(self, memory_store, config):
        engine = FileLifecycleEngine(memory_store, config=config)
        with pytest.raises(PreconditionFailedError):
            await engine.get_download_url("anything")
        await engine.close()


# ---------------------------------------------------------------------------
# Engine lifecycle
# ---------------------------------------------------------------------------


class TestEngineLifecycle:
    async def test_context_manager_drains_background_work(self, config):
        async with FileLifecycleEngine(MemoryDocumentStore(), config=config) as engine:
            first = await engine.upload_new_version(_request())
            await engine.upload_new_version(_request())
        record = await engine.get_file(first.file.id)
        assert record.version_status == VersionStatus.SUPERSEDED
        assert engine.background.pending == 0

    async def test_unknown_link_field(self, lifecycle: FileLifecycleEngine):
        link = await lifecycle.create_link("file", "f1")
        with pytest.raises(InvalidArgumentError, match="current_uses"):
            await lifecycle.update_link(link.id, current_uses=0)

    async def test_managers_share_config(self, lifecycle: FileLifecycleEngine, config):
        assert lifecycle.config is config
        assert lifecycle.links.cache.ttl_seconds == config.link_cache_ttl_seconds

    async def test_purge_scheduler(self, lifecycle: FileLifecycleEngine, clock):
        upload = await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(upload.file.id, "bob")
        clock.advance(days=61)

        scheduler = lifecycle.start_purge_scheduler(0.01)
        for _ in range(200):
            if scheduler.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await lifecycle.stop_purge_scheduler()

        assert scheduler.runs >= 2
        assert scheduler.failures == 0
        assert scheduler.running is False
        record = await lifecycle.get_file(upload.file.id)
        assert record.lifecycle_status == LifecycleStatus.PERMANENTLY_DELETED


# ---------------------------------------------------------------------------
# PurgeScheduler
# ---------------------------------------------------------------------------


class _FlakyTrash:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def run_purge_sweep(self) -> PurgeResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("store offline")
        return PurgeResult(ran_at=None)  # type: ignore[arg-type]


class TestPurgeScheduler:
    def test_interval_must_be_positive(self):
        with pytest.raises(InvalidArgumentError):
            PurgeScheduler(_FlakyTrash(0), 0)  # type: ignore[arg-type]

    async def test_run_once_logs_and_counts_failures(self, caplog):
        scheduler = PurgeScheduler(_FlakyTrash(1), 60)  # type: ignore[arg-type]

        assert await scheduler.run_once() is None
        result = await scheduler.run_once()

        assert result is not None
        assert scheduler.runs == 2
        assert scheduler.failures == 1
        assert scheduler.last_result is result
        assert "Purge sweep failed" in caplog.text

    async def test_loop_survives_failures(self):
        trash = _FlakyTrash(2)
        scheduler = PurgeScheduler(trash, 0.01)  # type: ignore[arg-type]
        scheduler.start()
        for _ in range(200):
            if trash.calls >= 3:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert trash.calls >= 3
        assert scheduler.failures == 2
        assert scheduler.last_result is not None

    async def test_stop_without_start(self):
        scheduler = PurgeScheduler(_FlakyTrash(0), 60)  # type: ignore[arg-type]
        await scheduler.stop()
        assert scheduler.running is False

    async def test_delayed_first_run(self):
        trash = _FlakyTrash(0)
        scheduler = PurgeScheduler(trash, 60, run_immediately=False)  # type: ignore[arg-type]
        scheduler.start()
        await asyncio.sleep(0.02)
        assert scheduler.running is True
        await scheduler.stop()
        assert trash.calls == 0
