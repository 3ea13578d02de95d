"""
Pytest configuration and shared fixtures for RoadSync tests.

This module provides common fixtures and test utilities used across
all test modules in the RoadSync project.
"""

import os
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from roadsync.config import SyncConfig  # noqa: E402
from roadsync.services.accounts import AccountRepository  # noqa: E402
from roadsync.services.database import DatabaseService  # noqa: E402
from roadsync.services.local_store import LocalRecordStore  # noqa: E402
from roadsync.services.models import Account  # noqa: E402


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment variables before each test."""
    original_values = {}

    test_env_vars = {
        "LOG_LEVEL": "DEBUG",
        "BACKEND_URL": "http://backend.test:3000",
        "CLOUD_MODE": "offline",
    }
    cleared_vars = ["FIREBASE_CREDENTIALS_PATH", "BACKEND_FALLBACK_URLS", "EMBEDDED_BACKEND"]

    for key, value in test_env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value
    for key in cleared_vars:
        original_values[key] = os.environ.pop(key, None)

    yield

    # Restore original values
    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset singleton instances before each test."""
    import roadsync.config
    import roadsync.logger

    roadsync.config._config_manager = None
    roadsync.logger._logger_service = None

    yield

    roadsync.config._config_manager = None
    roadsync.logger._logger_service = None


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def test_config(tmp_path):
    """Create a test configuration."""
    return SyncConfig(
        log_level="DEBUG",
        database_url=f"sqlite:///{tmp_path / 'roadsync.db'}",
        local_store_path=str(tmp_path / "local_cache.db"),
        backend_url="http://backend.test:3000",
        backend_fallback_urls=["http://backend-alt.test:3000"],
        cloud_mode="auto",
        probe_timeout_seconds=1.0,
        request_timeout_seconds=2.0,
    )


@pytest.fixture
async def db_service(tmp_path):
    """Initialized relational store in a temporary file."""
    service = DatabaseService(str(tmp_path / "relational.db"))
    await service.initialize()
    yield service
    await service.close()


@pytest.fixture
async def account_repo(db_service):
    return AccountRepository(db_service)


@pytest.fixture
async def local_store(tmp_path):
    """Initialized local fallback store in a temporary file."""
    store = LocalRecordStore(str(tmp_path / "local.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def owner():
    """Account with a cloud session."""
    return Account(id=1, email="citizen@example.com", cloud_subject_id="uid-citizen")


@pytest.fixture
def owner_without_session():
    return Account(id=2, email="offline@example.com")
