"""Fixtures for API tests.

The app's storage, guard and metrics dependencies are overridden with the
in-memory DuckDB storage and private metrics from the root conftest.
"""

import pytest
from fastapi.testclient import TestClient

from recordguard.api.dependencies import get_guard, get_metrics, get_storage_adapter
from recordguard.api.main import app


@pytest.fixture
def override_storage():
    """Swap the storage dependency for the rest of the test."""
    def _override(adapter):
        app.dependency_overrides[get_storage_adapter] = lambda: adapter
    return _override


@pytest.fixture
def client(storage, guard, metrics, override_storage):
    override_storage(storage)
    app.dependency_overrides[get_guard] = lambda: guard
    app.dependency_overrides[get_metrics] = lambda: metrics
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
