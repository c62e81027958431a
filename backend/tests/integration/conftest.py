# tests/integration/conftest.py
"""Integration test fixtures - FastAPI app over an in-memory pipeline"""

import pytest
from fastapi.testclient import TestClient

from simpipe.config import settings
from simpipe.main import create_app

HEADERS = {
    "X-Organization-Id": "org-1",
    "X-User-Id": "user-1",
}


@pytest.fixture
def headers():
    return dict(HEADERS)


@pytest.fixture
def client(pipeline, monkeypatch):
    """
    API client with workers and scheduler disabled.

    Jobs stay where the test puts them; `client.portal.call(...)` runs
    pipeline coroutines on the app's event loop.
    """
    monkeypatch.setattr(settings, "ENABLE_WORKERS", False)
    monkeypatch.setattr(settings, "ENABLE_SCHEDULER", False)

    with TestClient(create_app(pipeline)) as test_client:
        yield test_client


@pytest.fixture
def worker_client(pipeline, monkeypatch):
    """API client with background workers polling every 10ms."""
    monkeypatch.setattr(settings, "ENABLE_WORKERS", True)
    monkeypatch.setattr(settings, "ENABLE_SCHEDULER", False)
    pipeline.workers.poll_interval = 0.01

    with TestClient(create_app(pipeline)) as test_client:
        yield test_client
