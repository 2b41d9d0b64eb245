"""Tests for VersionManager — numbering, supersede, fresh containers, listing."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

import pytest

from filekeep.engine import FileLifecycleEngine
from filekeep.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from filekeep.models.status import LifecycleStatus, VersionStatus
from filekeep.types import UploadRequest
from filekeep.utils import lineage_key_for
from filekeep.versioning import IndexedLineageLookup, LineageLookup, ScanLineageLookup

if TYPE_CHECKING:
    from filekeep.config import LifecycleConfig
    from filekeep.store.blobs import LocalBlobStore
    from filekeep.store.memory import MemoryDocumentStore


def _request(original_name: str = "plan.pdf", **overrides: Any) -> UploadRequest:
    fields: dict[str, Any] = {
        "original_name": original_name,
        "uploaded_by": "alice",
        "size": 1024,
        "mime_type": "application/pdf",
        "storage_path": f"uploads/{uuid.uuid4().hex}",
        "project_id": "p1",
        "task_id": "t1",
    }
    fields.update(overrides)
    return UploadRequest(**fields)


# ---------------------------------------------------------------------------
# upload_new_version
# ---------------------------------------------------------------------------


class TestUploadNewVersion:
    async def test_first_upload(self, lifecycle: FileLifecycleEngine):
        result = await lifecycle.upload_new_version(_request())
        assert result.version == "1.0"
        assert result.fresh_container is True
        assert result.generation == 1
        assert result.pending_supersede == []
        assert result.file.version_status == VersionStatus.CURRENT
        assert result.file.lifecycle_status == LifecycleStatus.ACTIVE
        assert result.lineage_key == lineage_key_for("plan.pdf", "p1", "t1", None)

    async def test_second_upload_supersedes_first(self, lifecycle: FileLifecycleEngine):
        first = await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())

        assert second.version == "2.0"
        assert second.fresh_container is False
        assert second.lineage_key == first.lineage_key
        assert second.pending_supersede == [first.file.id]

        await lifecycle.wait_for_background()
        old = await lifecycle.get_file(first.file.id)
        new = await lifecycle.get_file(second.file.id)
        assert old.version_status == VersionStatus.SUPERSEDED
        assert new.version_status == VersionStatus.CURRENT

        listing = await lifecycle.list_versions(first.lineage_key)
        assert [v.version for v in listing.versions] == ["2.0", "1.0"]
        assert [v.version_status for v in listing.versions] == ["current", "superseded"]

    async def test_scope_separates_lineages(self, lifecycle: FileLifecycleEngine):
        a = await lifecycle.upload_new_version(_request(task_id="t1"))
        b = await lifecycle.upload_new_version(_request(task_id="t2"))
        c = await lifecycle.upload_new_version(_request(project_id="p2"))
        assert {a.version, b.version, c.version} == {"1.0"}
        assert len({a.lineage_key, b.lineage_key, c.lineage_key}) == 3

    async def test_surrounding_whitespace_ignored(self, lifecycle: FileLifecycleEngine):
        a = await lifecycle.upload_new_version(_request("plan.pdf"))
        b = await lifecycle.upload_new_version(_request("  plan.pdf "))
        assert b.lineage_key == a.lineage_key
        assert b.version == "2.0"
        assert b.file.original_name == "plan.pdf"

    async def test_numeric_version_order(self, lifecycle: FileLifecycleEngine):
        for _ in range(11):
            result = await lifecycle.upload_new_version(_request())
        await lifecycle.wait_for_background()

        listing = await lifecycle.list_versions(result.lineage_key)
        labels = [v.version for v in listing.versions]
        assert labels[:3] == ["11.0", "10.0", "9.0"]
        assert labels[-1] == "1.0"
        assert [v.version for v in listing.versions if v.version_status == "current"] == ["11.0"]

    async def test_file_attributes(self, lifecycle: FileLifecycleEngine):
        result = await lifecycle.upload_new_version(
            _request(
                "Site-Plan.DWG",
                name="Site plan (rev A)",
                mime_type="image/vnd.dwg",
                workflow_state="review",
            )
        )
        record = await lifecycle.get_file(result.file.id)
        assert record.name == "Site plan (rev A)"
        assert record.original_name == "Site-Plan.DWG"
        assert record.file_format == ".dwg"
        assert record.workflow_state == "review"
        assert record.uploaded_by == "alice"

    async def test_display_name_defaults_to_original(self, lifecycle: FileLifecycleEngine):
        result = await lifecycle.upload_new_version(_request("budget.xlsx"))
        assert result.file.name == "budget.xlsx"

    async def test_content_written_to_blob_store(
        self, lifecycle: FileLifecycleEngine, blobs: LocalBlobStore
    ):
        request = _request()
        await lifecycle.upload_new_version(request, b"%PDF-1.7 body")
        assert await blobs.get_blob(request.storage_path) == b"%PDF-1.7 body"
        assert await blobs.get_content_type(request.storage_path) == "application/pdf"

    async def test_content_without_blob_store(
        self, memory_store: MemoryDocumentStore, config: LifecycleConfig
    ):
        engine = FileLifecycleEngine(memory_store, config=config)
        with pytest.raises(InvalidArgumentError, match="blob store"):
            await engine.upload_new_version(_request(), b"data")
        assert len(memory_store) == 0

    async def test_failed_upload_discards_blob(
        self, failing_store, blobs: LocalBlobStore, blob_root, config: LifecycleConfig, clock
    ):
        engine = FileLifecycleEngine(failing_store, blobs, config=config, clock=clock)
        key = lineage_key_for("plan.pdf", "p1", "t1", None)
        failing_store.fail_sorts.add(f"LINEAGE#{key}")

        with pytest.raises(StoreUnavailableError):
            await engine.upload_new_version(_request(), b"%PDF-1.7 body")

        assert [p for p in blob_root.rglob("*") if p.is_file()] == []
        await engine.close()


class TestUploadValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"original_name": ""},
            {"original_name": "   "},
            {"original_name": "a/b.pdf"},
            {"uploaded_by": ""},
            {"size": -1},
            {"storage_path": ""},
        ],
    )
    async def test_rejected_before_store_access(
        self,
        lifecycle: FileLifecycleEngine,
        memory_store: MemoryDocumentStore,
        overrides: dict[str, Any],
    ):
        with pytest.raises(InvalidArgumentError):
            await lifecycle.upload_new_version(_request(**overrides))
        assert len(memory_store) == 0

    async def test_invalid_argument_is_value_error(self, lifecycle: FileLifecycleEngine):
        with pytest.raises(ValueError):
            await lifecycle.upload_new_version(_request(size=-5))

    async def test_missing_parent_folder(self, lifecycle: FileLifecycleEngine):
        with pytest.raises(NotFoundError):
            await lifecycle.upload_new_version(_request(parent_folder_id="nope"))

    async def test_deleted_parent_folder(self, lifecycle: FileLifecycleEngine):
        folder = await lifecycle.create_folder("Drawings", "alice")
        await lifecycle.soft_delete_folder(folder.id, "alice")
        with pytest.raises(PreconditionFailedError):
            await lifecycle.upload_new_version(_request(parent_folder_id=folder.id))

    async def test_upload_into_folder(self, lifecycle: FileLifecycleEngine):
        folder = await lifecycle.create_folder("Drawings", "alice")
        result = await lifecycle.upload_new_version(_request(parent_folder_id=folder.id))
        assert result.file.parent_folder_id == folder.id
        root_copy = await lifecycle.upload_new_version(_request())
        assert root_copy.lineage_key != result.lineage_key
        assert root_copy.version == "1.0"


# ---------------------------------------------------------------------------
# Fresh-container reset
# ---------------------------------------------------------------------------


class TestFreshContainer:
    async def test_reset_after_soft_delete(self, lifecycle: FileLifecycleEngine):
        first = await lifecycle.upload_new_version(_request())
        await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(first.file.id, "alice")

        third = await lifecycle.upload_new_version(_request())
        assert third.version == "1.0"
        assert third.fresh_container is True
        assert third.generation == 2
        assert third.pending_supersede == []
        assert third.file.version_status == VersionStatus.CURRENT

        listing = await lifecycle.list_versions(first.lineage_key)
        assert [v.file_id for v in listing.versions] == [third.file.id]

        with_trash = await lifecycle.list_versions(first.lineage_key, include_deleted=True)
        assert len(with_trash.versions) == 3

    async def test_reset_after_purge(self, lifecycle: FileLifecycleEngine, clock):
        for _ in range(4):
            last = await lifecycle.upload_new_version(_request())
        await lifecycle.wait_for_background()
        await lifecycle.soft_delete_file_container(last.file.id, "alice")
        clock.advance(days=61)
        await lifecycle.run_purge_sweep()

        fresh = await lifecycle.upload_new_version(_request())
        assert fresh.version == "1.0"
        assert fresh.generation == 2

        listing = await lifecycle.list_versions(fresh.lineage_key, include_deleted=True)
        assert [v.version for v in listing.versions] == ["1.0"]

    async def test_generation_counts_every_reset(self, lifecycle: FileLifecycleEngine):
        for expected_generation in (1, 2, 3):
            result = await lifecycle.upload_new_version(_request())
            assert result.generation == expected_generation
            assert result.version == "1.0"
            await lifecycle.soft_delete_file_container(result.file.id, "alice")

    async def test_numbering_continues_in_new_generation(self, lifecycle: FileLifecycleEngine):
        first = await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(first.file.id, "alice")
        await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())
        assert second.version == "2.0"
        assert second.generation == 2

    async def test_generation_never_reused_after_restore(
        self, lifecycle: FileLifecycleEngine, clock
    ):
        a = await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(a.file.id, "bob")
        clock.advance(minutes=1)
        b = await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(b.file.id, "bob")
        clock.advance(minutes=1)
        await lifecycle.restore_file(a.file.id)

        a2 = await lifecycle.upload_new_version(_request())
        await lifecycle.wait_for_background()
        assert a2.version == "2.0"
        assert a2.generation == 1
        await lifecycle.soft_delete_file_container(a2.file.id, "bob")

        c = await lifecycle.upload_new_version(_request())
        assert c.fresh_container is True
        assert c.generation == 3


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentUploads:
    async def test_concurrent_uploads_get_distinct_versions(
        self, yielding_store, config: LifecycleConfig, clock
    ):
        engine = FileLifecycleEngine(yielding_store, config=config, clock=clock)
        results = await asyncio.gather(*(engine.upload_new_version(_request()) for _ in range(5)))
        assert sorted(r.version for r in results) == ["1.0", "2.0", "3.0", "4.0", "5.0"]
        assert sum(r.fresh_container for r in results) == 1

        await engine.wait_for_background()
        listing = await engine.list_versions(results[0].lineage_key)
        current = [v for v in listing.versions if v.version_status == "current"]
        assert [v.version for v in current] == ["5.0"]
        await engine.close()

    async def test_supersede_skips_concurrently_deleted(
        self, lifecycle: FileLifecycleEngine, memory_store: MemoryDocumentStore
    ):
        first = await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())
        # Trash the lineage before the background demotion runs.
        await lifecycle.soft_delete_file_container(second.file.id, "bob")
        await lifecycle.wait_for_background()

        old = await lifecycle.get_file(first.file.id)
        assert old.lifecycle_status == LifecycleStatus.DELETED
        assert old.deleted_by == "bob"

    async def test_supersede_failure_does_not_fail_upload(
        self, failing_store, config: LifecycleConfig, clock, caplog
    ):
        engine = FileLifecycleEngine(failing_store, config=config, clock=clock)
        first = await engine.upload_new_version(_request())
        failing_store.fail_sorts.add(f"FILE#{first.file.id}")

        with caplog.at_level(logging.WARNING, logger="filekeep.versioning"):
            second = await engine.upload_new_version(_request())
            await engine.wait_for_background()

        assert second.version == "2.0"
        assert second.pending_supersede == [first.file.id]
        assert "Failed to mark" in caplog.text
        assert (await engine.get_file(first.file.id)).version_status == VersionStatus.CURRENT
        await engine.close()


# ---------------------------------------------------------------------------
# Lineage lookup strategies
# ---------------------------------------------------------------------------


class TestLineageLookup:
    def test_strategies_satisfy_protocol(self, memory_store: MemoryDocumentStore):
        assert isinstance(IndexedLineageLookup(memory_store), LineageLookup)
        assert isinstance(ScanLineageLookup(memory_store), LineageLookup)

    async def test_scan_lookup(
        self, memory_store: MemoryDocumentStore, config: LifecycleConfig, clock
    ):
        engine = FileLifecycleEngine(
            memory_store,
            config=config,
            lineage_lookup=ScanLineageLookup(memory_store),
            clock=clock,
        )
        first = await engine.upload_new_version(_request())
        second = await engine.upload_new_version(_request())
        await engine.upload_new_version(_request("other.pdf"))
        await engine.wait_for_background()

        assert second.version == "2.0"
        listing = await engine.list_versions(first.lineage_key)
        assert [v.version for v in listing.versions] == ["2.0", "1.0"]

        await engine.soft_delete_file_container(first.file.id, "alice")
        third = await engine.upload_new_version(_request())
        assert third.version == "1.0"
        await engine.close()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_list_versions_unknown_lineage(self, lifecycle: FileLifecycleEngine):
        with pytest.raises(NotFoundError):
            await lifecycle.list_versions("0" * 40)

    async def test_list_versions_requires_key(self, lifecycle: FileLifecycleEngine):
        with pytest.raises(InvalidArgumentError):
            await lifecycle.list_versions("")

    async def test_list_versions_for_file(self, lifecycle: FileLifecycleEngine):
        first = await lifecycle.upload_new_version(_request())
        await lifecycle.upload_new_version(_request())
        listing = await lifecycle.list_versions_for_file(first.file.id)
        assert listing.lineage_key == first.lineage_key
        assert len(listing.versions) == 2

    async def test_get_file_missing(self, lifecycle: FileLifecycleEngine):
        with pytest.raises(NotFoundError):
            await lifecycle.get_file("missing")

    async def test_get_current_version(self, lifecycle: FileLifecycleEngine):
        await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())
        current = await lifecycle.get_current_version(second.lineage_key)
        assert current is not None
        assert current.id == second.file.id

    async def test_get_current_version_before_supersede_lands(
        self, lifecycle: FileLifecycleEngine
    ):
        await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())
        # Both records may still say "current"; the newest wins.
        current = await lifecycle.get_current_version(second.lineage_key)
        assert current is not None
        assert current.version == "2.0"

    async def test_get_current_version_of_trashed_lineage(self, lifecycle: FileLifecycleEngine):
        result = await lifecycle.upload_new_version(_request())
        await lifecycle.soft_delete_file_container(result.file.id, "alice")
        assert await lifecycle.get_current_version(result.lineage_key) is None

    async def test_result_current_property(self, lifecycle: FileLifecycleEngine):
        await lifecycle.upload_new_version(_request())
        second = await lifecycle.upload_new_version(_request())
        await lifecycle.wait_for_background()
        listing = await lifecycle.list_versions(second.lineage_key)
        assert listing.current is not None
        assert listing.current.file_id == second.file.id
