"""
Pytest configuration and fixtures for the test suite.
"""
import pytest
import pytest_asyncio
import os
import sys

# Add src directory (and project root, for tests.fixtures) to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from token_relay.credential_store import CredentialPair, MemoryCredentialStore
from token_relay.refresh_coordinator import RefreshCoordinator
from tests.fixtures.fake_services import FakeApiServer, FakeIdentityService


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep relay settings from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("TIMEOUT_") or key.startswith("TOKEN_RELAY_") or key == "API_URL":
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def expired_pair():
    """Stored pair whose access token the server no longer accepts."""
    return CredentialPair("access-0", "refresh-0")


@pytest.fixture
def store(expired_pair):
    return MemoryCredentialStore(expired_pair)


@pytest.fixture
def identity():
    return FakeIdentityService()


@pytest.fixture
def coordinator(store, identity):
    return RefreshCoordinator(store, identity, timeout=None)


@pytest.fixture
def logout_events(coordinator):
    """Collects every error passed to the forced-logout signal."""
    events = []
    coordinator.add_logout_listener(events.append)
    return events


@pytest.fixture
def api_server():
    return FakeApiServer()


@pytest_asyncio.fixture
async def api_client(api_server):
    """httpx client wired to the fake API server."""
    async with api_server.client() as client:
        yield client
