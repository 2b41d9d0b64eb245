"""Tests for the document models and the store table."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import inspect

from filekeep.models import (
    FileRecord,
    FolderRecord,
    LifecycleStatus,
    LineageRecord,
    LinkPermission,
    ResourceType,
    ShareableLinkRecord,
    VersionStatus,
)

# ---------------------------------------------------------------------------
# Table creation
# ---------------------------------------------------------------------------


class TestTableCreation:
    async def test_store_table_exists(self, async_engine):
        async with async_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
        assert "filekeep_items" in tables

    async def test_document_models_have_no_tables(self, async_engine):
        async with async_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
        assert tables == ["filekeep_items"]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaultFactories:
    def test_file_record_defaults(self):
        f = FileRecord(name="plan.pdf", original_name="plan.pdf")
        assert f.id
        assert f.version == "1.0"
        assert f.version_status == VersionStatus.CURRENT
        assert f.lifecycle_status == LifecycleStatus.ACTIVE
        assert f.generation == 1
        assert f.deleted_at is None
        assert f.purged_at is None
        assert f.created_at.tzinfo is not None
        assert f.is_active

    def test_folder_record_defaults(self):
        folder = FolderRecord(name="Drawings")
        assert folder.id
        assert folder.parent_id is None
        assert folder.is_active

    def test_link_defaults(self):
        link = ShareableLinkRecord(resource_type=ResourceType.FILE, resource_id="f1")
        assert len(link.id) >= 32
        assert link.permission == LinkPermission.VIEW
        assert link.current_uses == 0
        assert link.is_active is True
        assert link.attributes == {}

    def test_lineage_defaults(self):
        head = LineageRecord(lineage_key="abc")
        assert head.generation == 1
        assert head.version_count == 0
        assert head.current_file_id is None
        assert head.batch_deleted_at is None
        assert head.batch_deadline is None


# ---------------------------------------------------------------------------
# JSON documents
# ---------------------------------------------------------------------------


class TestDocuments:
    def test_file_record_json_round_trip(self):
        deleted = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
        f = FileRecord(
            name="plan.pdf",
            lifecycle_status=LifecycleStatus.DELETED,
            deleted_at=deleted,
            version_status=VersionStatus.SUPERSEDED,
        )
        data = f.model_dump(mode="json")
        assert data["lifecycle_status"] == "deleted"
        assert data["version_status"] == "superseded"
        assert isinstance(data["deleted_at"], str)

        restored = FileRecord.model_validate(data)
        assert restored.lifecycle_status == LifecycleStatus.DELETED
        assert restored.deleted_at == deleted
        assert not restored.is_active

    def test_link_enums_parse_from_strings(self):
        link = ShareableLinkRecord.model_validate(
            {"resource_type": "folder", "resource_id": "d1", "permission": "edit"}
        )
        assert link.resource_type == ResourceType.FOLDER
        assert link.permission == LinkPermission.EDIT
