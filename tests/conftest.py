"""Pytest configuration and shared fixtures.

Usage Guide:
- For scheduler tests: use the fake_transport fixture (or build a
  FakeTransport with custom completion rules) and make_scheduler()
- For httpx transport tests: build an httpx.MockTransport handler and use
  mock_scheduler()
"""

import os
from datetime import UTC, datetime

import pytest
from loguru import logger

from rolling_fetch.config import get_settings
from tests.fixtures.transport import FakeTransport

# -----------------------------------------------------------------------------
# Test Timeline Constants
# -----------------------------------------------------------------------------
T0 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)
T0_PLUS_1_5 = datetime(2024, 1, 15, 10, 0, 1, 500000, tzinfo=UTC)


# -----------------------------------------------------------------------------
# Transport Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def fake_transport() -> FakeTransport:
    """FakeTransport completing one operation per wait, oldest first."""
    return FakeTransport()


# -----------------------------------------------------------------------------
# State Isolation
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch: pytest.MonkeyPatch):
    """Keep cached settings and loguru sinks from leaking between tests."""
    for key in list(os.environ):
        if key.startswith("ROLLFETCH_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    logger.remove()
