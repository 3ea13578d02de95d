"""
Tests for the roadsync command-line entry point.
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from roadsync.main import build_parser, cmd_sync, cmd_unsynced, main
from roadsync.services.errors import ReconciliationUnavailableError
from roadsync.services.models import RecordKind, SyncableRecord, SyncDirection
from roadsync.services.report import SyncReport


@pytest.fixture
def context():
    ctx = MagicMock()
    ctx.initialize = AsyncMock()
    ctx.shutdown = AsyncMock()
    ctx.sync_manager.run_full_sync = AsyncMock(
        return_value=SyncReport(direction=SyncDirection.BOTH, started_at=datetime(2024, 5, 1))
    )
    ctx.sync_manager.health_check = AsyncMock(
        return_value={"status": "healthy", "targets": {"backend": True, "cloud": True}}
    )
    ctx.sync_manager.get_sync_stats = AsyncMock(return_value={"total": 0, "unsynced": 0})
    ctx.tracker.list_unsynced = AsyncMock(return_value=[])
    return ctx


@pytest.fixture
def patched_context(context):
    with patch("roadsync.main.SyncContext") as mock_cls:
        mock_cls.from_config.return_value = context
        yield context


class TestBuildParser:
    def test_sync_direction_default(self):
        args = build_parser().parse_args(["sync"])
        assert args.direction == "both"
        assert args.handler is cmd_sync

    def test_unsynced_kind(self):
        args = build_parser().parse_args(["unsynced", "--kind", "photo"])
        assert args.kind == "photo"
        assert args.handler is cmd_unsynced

    def test_invalid_direction_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "--direction", "sideways"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """End-to-end command dispatch with a mocked context."""

    def test_probe_healthy(self, patched_context, capsys):
        assert main(["probe"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["status"] == "healthy"
        patched_context.initialize.assert_awaited_once()
        patched_context.shutdown.assert_awaited_once()

    def test_probe_degraded_exit_code(self, patched_context):
        patched_context.sync_manager.health_check.return_value = {"status": "degraded"}

        assert main(["probe"]) == 1

    def test_sync_passes_direction(self, patched_context, capsys):
        """Test the CLI direction maps onto SyncDirection."""
        assert main(["sync", "--direction", "local-to-cloud"]) == 0

        patched_context.sync_manager.run_full_sync.assert_awaited_once_with(
            SyncDirection.LOCAL_TO_CLOUD
        )
        assert json.loads(capsys.readouterr().out)["totals"]["errors"] == 0

    def test_sync_with_errors_exit_code(self, patched_context):
        report = SyncReport(direction=SyncDirection.BOTH, started_at=datetime(2024, 5, 1))
        report.records_local_to_cloud.record_error("r1", RuntimeError("quota"))
        patched_context.sync_manager.run_full_sync.return_value = report

        assert main(["sync"]) == 1

    def test_sync_aborted(self, patched_context):
        """Test an unavailable identity listing exits 2 and still shuts down."""
        patched_context.sync_manager.run_full_sync.side_effect = (
            ReconciliationUnavailableError("cloud listing failed")
        )

        assert main(["sync"]) == 2
        patched_context.shutdown.assert_awaited_once()

    def test_stats(self, patched_context, capsys):
        assert main(["stats"]) == 0
        assert json.loads(capsys.readouterr().out) == {"total": 0, "unsynced": 0}

    def test_unsynced_lists_records(self, patched_context, capsys):
        patched_context.tracker.list_unsynced.return_value = [
            SyncableRecord(
                record_id="r1",
                kind=RecordKind.PHOTO,
                owner_account_id=3,
                payload={},
                local_id=11,
                created_at=datetime(2024, 5, 1),
            )
        ]

        assert main(["unsynced", "--kind", "photo"]) == 0

        patched_context.tracker.list_unsynced.assert_awaited_once_with(RecordKind.PHOTO)
        output = json.loads(capsys.readouterr().out)
        assert output[0]["record_id"] == "r1"
        assert output[0]["local_id"] == 11
        assert output[0]["kind"] == "photo"

    def test_unexpected_error_exit_code(self, patched_context):
        patched_context.initialize.side_effect = RuntimeError("database locked")

        assert main(["stats"]) == 1

    def test_log_level_option(self, patched_context):
        with patch("roadsync.main.get_logger_service") as mock_service:
            assert main(["--log-level", "warning", "stats"]) == 0

        mock_service.return_value.set_level.assert_called_once_with("WARNING")
