"""Integration test fixtures for EchoRelay.

Provides a fresh app per test and a sync TestClient for WebSocket sessions.
"""

import pytest
from starlette.testclient import TestClient

from echorelay.api.app import create_app


@pytest.fixture
def app(settings):
    """Create a fresh FastAPI application instance."""
    return create_app(settings)


@pytest.fixture
def test_client(app):
    """Sync TestClient; WebSocket sessions run on its portal thread."""
    with TestClient(app) as client:
        yield client
