"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("OFFERS_DEFAULT_ELIGIBLE", "false")

from storefront.core.storage import InMemoryStorageBackend, KeyValueStore  # noqa: E402
from storefront.services.analytics import RecordingAnalyticsSink  # noqa: E402
from storefront.services.cart_session import CartSession  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from storefront.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryStorageBackend:
    """Provide an empty in-memory storage backend."""
    return InMemoryStorageBackend()


@pytest.fixture
def store(backend: InMemoryStorageBackend, clock: FakeClock) -> KeyValueStore:
    """Provide a key-value store driven by the fake clock."""
    return KeyValueStore(backend, clock=clock)


@pytest.fixture
def sink() -> RecordingAnalyticsSink:
    """Provide an analytics sink that records emitted events."""
    return RecordingAnalyticsSink()


@pytest.fixture
def make_session(
    store: KeyValueStore, sink: RecordingAnalyticsSink
) -> Callable[..., CartSession]:
    """Provide a factory for cart sessions sharing the test store.

    A new session over the same store behaves like a freshly opened tab.
    """

    def _make(eligible: bool = True, **kwargs: Any) -> CartSession:
        return CartSession(store, eligibility=lambda: eligible, sink=sink, **kwargs)

    return _make


@pytest.fixture
def client(sink: RecordingAnalyticsSink) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Uses a fresh in-memory backend and the recording analytics sink.

    Args:
        sink: Recording analytics sink fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from storefront.api.deps import get_analytics_sink
    from storefront.core.storage import reset_storage_backend
    from storefront.main import app

    reset_storage_backend()
    app.dependency_overrides[get_analytics_sink] = lambda: sink
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reset_storage_backend()

