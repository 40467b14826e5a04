"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.alerts.scanner import ScanResult
from src.alerts.scheduler import TickResult
from src.alerts.service import DispatchStats
from src.api.app import create_app
from src.api.auth import verify_api_key
from src.api.dependencies import get_alert_engine, get_database, get_redis_client


@pytest.fixture
def mock_engine():
    """Mock AlertEngine with benign defaults."""
    engine = AsyncMock()
    engine.on_job_created.return_value = ScanResult(
        job_id="job_001", evaluated=3, matched=2, skipped=1,
    )
    engine.on_job_deleted.return_value = True
    engine.deactivate_alert.return_value = True
    engine.delete_alert.return_value = True
    engine.force_dispatch.return_value = TickResult(releases=4, deferred=1)
    engine.stats.return_value = DispatchStats(
        sent_today=12,
        sent_this_month=95,
        sent_total=340,
        failed_today=1,
        pending_jobs=2,
        pending_buckets=5,
        deferred_matches=3,
        calls_today=7,
    )
    engine.scheduler = MagicMock()
    engine.scheduler.backlog = AsyncMock(return_value=(5, 3))
    return engine


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.health_check.return_value = True
    return db


@pytest.fixture
def mock_redis():
    client = AsyncMock()
    client.ping.return_value = True
    return client


@pytest.fixture
def client(mock_engine, mock_db, mock_redis):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_alert_engine] = lambda: mock_engine
    app.dependency_overrides[get_database] = lambda: mock_db
    app.dependency_overrides[get_redis_client] = lambda: mock_redis

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
