"""
Shared fixtures for relay service tests.
"""

import pytest

from shared.config import ServiceConfig

from .fakes import FakeBackend, FakeClock, FakeContentSource


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_source():
    return FakeContentSource()


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def relay_config():
    """Service configuration isolated from the developer's environment."""
    return ServiceConfig(
        "relay",
        gemini_api_key="test-key",
        rss_cache_ttl_seconds=120.0,
        max_stream_sessions=10,
        log_level="warning",
    )
