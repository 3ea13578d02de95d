"""
Tests for LocalRecordStore.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import aiosqlite
import pytest

from roadsync.services.errors import WriteFailedError
from roadsync.services.local_store import LocalRecordStore
from roadsync.services.models import PendingUpdate, RecordKind, RecordSource, SyncableRecord


def make_record(record_id: str, kind=RecordKind.REPORT, created_at=None, **kwargs):
    return SyncableRecord(
        record_id=record_id,
        kind=kind,
        owner_account_id=1,
        payload={"title": f"Pothole {record_id}", "lat": -18.91, "lng": 47.52},
        created_at=created_at or datetime(2024, 5, 1, 8, 0),
        **kwargs,
    )


class TestLocalRecordStore:
    """Local fallback store behaviour."""

    async def test_insert_assigns_local_id(self, local_store):
        """Test insert returns the stored row."""
        stored = await local_store.insert(make_record("r1"))

        assert stored.local_id is not None
        assert stored.record_id == "r1"
        assert stored.synced is False
        assert stored.source == RecordSource.LOCAL
        assert stored.payload["title"] == "Pothole r1"

    async def test_insert_is_idempotent_by_record_id(self, local_store):
        """Test the same record_id is never stored twice."""
        first = await local_store.insert(make_record("same"))
        second = await local_store.insert(make_record("same"))

        assert first.local_id == second.local_id
        assert len(await local_store.list_unsynced()) == 1

    async def test_get(self, local_store):
        stored = await local_store.insert(make_record("r1", kind=RecordKind.PHOTO))

        fetched = await local_store.get(stored.local_id)
        assert fetched.kind == RecordKind.PHOTO
        assert await local_store.get(12345) is None

    async def test_list_unsynced_oldest_first_and_by_kind(self, local_store):
        """Test ordering and kind filter."""
        base = datetime(2024, 5, 1)
        await local_store.insert(make_record("late", created_at=base + timedelta(hours=2)))
        await local_store.insert(make_record("early", created_at=base))
        await local_store.insert(
            make_record("note", kind=RecordKind.NOTIFICATION, created_at=base + timedelta(hours=1))
        )

        all_records = await local_store.list_unsynced()
        reports = await local_store.list_unsynced(RecordKind.REPORT)

        assert [r.record_id for r in all_records] == ["early", "note", "late"]
        assert [r.record_id for r in reports] == ["early", "late"]

    async def test_mark_synced_returns_existing_ids(self, local_store):
        """Test unknown ids are ignored and duplicates collapsed."""
        stored = await local_store.insert(make_record("r1"))

        updated = await local_store.mark_synced([stored.local_id, 999, stored.local_id])

        assert updated == [stored.local_id]
        assert await local_store.list_unsynced() == []

    async def test_attach_cloud_id(self, local_store):
        stored = await local_store.insert(make_record("r1"))

        assert await local_store.attach_cloud_id(stored.local_id, "doc-1") is True
        assert (await local_store.get(stored.local_id)).cloud_id == "doc-1"
        assert await local_store.attach_cloud_id(999, "doc-2") is False

    async def test_get_stats_covers_every_kind(self, local_store):
        """Test per-kind statistics."""
        first = await local_store.insert(make_record("r1"))
        await local_store.insert(make_record("r2", source=RecordSource.CLOUD))
        await local_store.mark_synced([first.local_id])

        stats = await local_store.get_stats()

        assert set(stats) == {"report", "notification", "photo"}
        assert stats["report"] == {
            "total": 2,
            "synced": 1,
            "unsynced": 1,
            "from_cloud": 1,
            "from_local": 1,
        }
        assert stats["photo"]["total"] == 0

    async def test_corrupt_payload_is_read_as_empty(self, local_store):
        """Test a malformed payload row does not break listing."""
        stored = await local_store.insert(make_record("r1"))
        async with local_store.db.get_connection() as conn:
            await conn.execute(
                "UPDATE records SET payload = ? WHERE local_id = ?", ("{broken", stored.local_id)
            )
            await conn.commit()

        records = await local_store.list_unsynced()
        assert records[0].payload == {}

    async def test_storage_failure_raises_write_failed(self, local_store):
        """Test any storage error surfaces as WriteFailedError."""
        with patch.object(
            local_store.db,
            "get_connection",
            side_effect=aiosqlite.OperationalError("disk I/O error"),
        ):
            with pytest.raises(WriteFailedError, match="disk I/O error"):
                await local_store.insert(make_record("r1"))

    async def test_uninitialized_store_raises_write_failed(self, tmp_path):
        """Test writing before initialize is a WriteFailedError."""
        store = LocalRecordStore(str(tmp_path / "never_opened.db"))

        with pytest.raises(WriteFailedError):
            await store.insert(make_record("r1"))


class TestPendingUpdates:
    """Queue of changes to existing records."""

    async def test_queue_and_list(self, local_store):
        queued = await local_store.queue_update(
            PendingUpdate(record_id="n1", kind=RecordKind.NOTIFICATION, changes={"read": True})
        )

        pending = await local_store.list_pending_updates()

        assert queued.queued_at is not None
        assert len(pending) == 1
        assert pending[0].record_id == "n1"
        assert pending[0].kind == RecordKind.NOTIFICATION
        assert pending[0].changes == {"read": True}
        assert pending[0].backend_id is None

    async def test_newer_update_replaces_older(self, local_store):
        """Test one entry per record, the latest changes win and a known backend id is kept."""
        await local_store.queue_update(
            PendingUpdate(
                record_id="r1",
                kind=RecordKind.REPORT,
                changes={"status": 2},
                backend_id="42",
                queued_at=datetime(2024, 5, 1, 8, 0),
            )
        )
        await local_store.queue_update(
            PendingUpdate(
                record_id="r1",
                kind=RecordKind.REPORT,
                changes={"status": 3},
                queued_at=datetime(2024, 5, 1, 9, 0),
            )
        )

        pending = await local_store.list_pending_updates()

        assert len(pending) == 1
        assert pending[0].changes == {"status": 3}
        assert pending[0].backend_id == "42"
        assert pending[0].queued_at == datetime(2024, 5, 1, 9, 0)

    async def test_oldest_first(self, local_store):
        start = datetime(2024, 5, 1, 8, 0)
        for i, record_id in enumerate(["late", "early"]):
            await local_store.queue_update(
                PendingUpdate(
                    record_id=record_id,
                    kind=RecordKind.REPORT,
                    changes={},
                    queued_at=start - timedelta(minutes=i),
                )
            )

        pending = await local_store.list_pending_updates()

        assert [u.record_id for u in pending] == ["early", "late"]

    async def test_remove_pending_update(self, local_store):
        await local_store.queue_update(
            PendingUpdate(record_id="r1", kind=RecordKind.REPORT, changes={"status": 2})
        )

        assert await local_store.remove_pending_update("r1") is True
        assert await local_store.remove_pending_update("r1") is False
        assert await local_store.list_pending_updates() == []

    async def test_queue_failure_raises_write_failed(self, local_store):
        with patch.object(
            local_store.db,
            "get_connection",
            side_effect=aiosqlite.OperationalError("database is locked"),
        ):
            with pytest.raises(WriteFailedError, match="database is locked"):
                await local_store.queue_update(
                    PendingUpdate(record_id="r1", kind=RecordKind.REPORT, changes={})
                )
