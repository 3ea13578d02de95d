"""
Tests for SyncContext wiring.
"""

from unittest.mock import MagicMock, patch

import pytest
from mocks.cloud_fakes import FakeDocumentStore, FakeIdentityAPI

from roadsync.services.backend import BackendClient
from roadsync.services.backend_store import BackendRecordStore
from roadsync.services.context import SyncContext
from roadsync.services.models import ProbeTarget, RecordKind, WriteOrigin


class TestSyncContext:
    """Service construction and lifecycle."""

    def test_offline_without_firebase(self, test_config):
        """Test no Firebase adapters are built without credentials."""
        context = SyncContext.from_config(test_config)

        assert context.identity_api is None
        assert context.document_store is None
        assert context.reconciler is None
        assert isinstance(context.backend, BackendClient)
        assert context.prober._overrides[ProbeTarget.CLOUD] is False

    def test_explicit_adapters(self, test_config):
        context = SyncContext.from_config(
            test_config, identity_api=FakeIdentityAPI(), document_store=FakeDocumentStore()
        )

        assert context.reconciler is not None
        assert context.sync_manager.document_store is context.document_store
        assert ProbeTarget.CLOUD not in context.prober._overrides

    def test_cloud_mode_offline_pins_cloud(self, test_config):
        config = test_config.model_copy(update={"cloud_mode": "offline"})

        context = SyncContext.from_config(config, document_store=FakeDocumentStore())

        assert context.prober._overrides[ProbeTarget.CLOUD] is False

    def test_firebase_built_from_credentials(self, tmp_path, test_config):
        credentials_file = tmp_path / "service-account.json"
        credentials_file.write_text("{}")
        config = test_config.model_copy(
            update={"firebase_credentials_path": str(credentials_file)}
        )

        with patch("roadsync.services.context.init_firebase") as mock_init, patch(
            "roadsync.services.context.FirebaseIdentityClient"
        ) as mock_identity, patch(
            "roadsync.services.context.FirestoreDocumentStore"
        ) as mock_documents:
            context = SyncContext.from_config(config)

        mock_init.assert_called_once_with(config)
        assert context.identity_api is mock_identity.return_value
        assert context.document_store is mock_documents.return_value

    def test_embedded_backend(self, test_config):
        config = test_config.model_copy(update={"embedded_backend": True})

        context = SyncContext.from_config(config)

        assert isinstance(context.backend, BackendRecordStore)
        assert context.backend.db is context.database

    async def test_lifecycle_and_local_floor(self, test_config, fake_clock, owner):
        """Test an initialized context writes locally when nothing else answers."""
        config = test_config.model_copy(update={"embedded_backend": True})
        context = SyncContext.from_config(config, clock=fake_clock)
        context.prober.set_override(ProbeTarget.BACKEND, False)

        await context.initialize()
        try:
            result = await context.coordinator.create_report({"title": "x"}, owner)
            backlog = await context.tracker.list_unsynced()
        finally:
            await context.shutdown()

        assert result.origin == WriteOrigin.LOCAL
        assert [r.record_id for r in backlog] == [result.record_id]
        assert not context.database.is_initialized

    async def test_notification_read_keeps_one_row(self, test_config, fake_clock):
        """Test reading a notification, online then replayed after an outage, never adds rows."""
        config = test_config.model_copy(update={"embedded_backend": True})
        context = SyncContext.from_config(config, clock=fake_clock)

        await context.initialize()
        try:
            owner = await context.accounts.create(email="citizen@example.com")
            first = await context.coordinator.create_notification({"title": "Route"}, owner)
            second = await context.coordinator.create_notification({"title": "Pont"}, owner)
            read_online = await context.coordinator.mark_notification_read(
                first.record_id, backend_id=first.backend_id
            )

            context.prober.set_override(ProbeTarget.BACKEND, False)
            read_offline = await context.coordinator.mark_notification_read(second.record_id)
            context.prober.set_override(ProbeTarget.BACKEND, None)
            report = await context.sync_manager.run_full_sync()

            rows = await context.backend.list_records(RecordKind.NOTIFICATION)
            pending = await context.local_store.list_pending_updates()
        finally:
            await context.shutdown()

        assert first.origin == second.origin == WriteOrigin.BACKEND
        assert read_online.origin == WriteOrigin.BACKEND
        assert read_offline.origin == WriteOrigin.LOCAL
        assert report.pending_updates.added == 1
        assert pending == []
        assert [r["record_id"] for r in rows] == [first.record_id, second.record_id]
        assert all(r["payload"]["read"] is True for r in rows)
        assert [r["payload"]["title"] for r in rows] == ["Route", "Pont"]

    async def test_shutdown_tolerates_backend_errors(self, test_config):
        context = SyncContext.from_config(test_config)
        context.backend = MagicMock()
        context.backend.stop = MagicMock(side_effect=RuntimeError("already closed"))

        await context.shutdown()

    @pytest.mark.parametrize("mode,expected", [("online", True), ("offline", False)])
    def test_cloud_mode_override(self, test_config, mode, expected):
        config = test_config.model_copy(update={"cloud_mode": mode})

        context = SyncContext.from_config(
            config, identity_api=FakeIdentityAPI(), document_store=FakeDocumentStore()
        )

        assert context.prober._overrides[ProbeTarget.CLOUD] is expected
