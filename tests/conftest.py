"""Root pytest configuration for docker-registry-v2 tests."""
import pytest

from docker_registry_v2.client import RegistryClientV2
from docker_registry_v2.settings import ClientSettings

from .fakes.fake_registry import FakeRegistry, seeded_registry


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


REGISTRY_ENV_VARS = [
    "REGISTRY_USERNAME",
    "REGISTRY_PASSWORD",
    "REGISTRY_TOKEN",
    "REGISTRY_INSECURE",
    "REGISTRY_SCHEME",
    "REGISTRY_ACCEPT_MANIFEST_LISTS",
    "REGISTRY_ACCEPT_OCI_MANIFESTS",
    "REGISTRY_MAX_SCHEMA_VERSION",
    "REGISTRY_USER_AGENT",
    "REGISTRY_SCOPES",
    "REGISTRY_HTTP_TIMEOUT",
    "REGISTRY_CONNECT_TIMEOUT",
    "REGISTRY_HTTP_RETRY",
    "REGISTRY_MAX_REDIRECTS",
]


# Isolate tests from the developer's environment
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Automatically clear registry environment variables."""
    for name in REGISTRY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# Standardized test fixtures
@pytest.fixture
def settings():
    """Standard test settings."""
    return ClientSettings(user_agent="docker-registry-v2-tests")


@pytest.fixture
def seeded():
    """Fake Bearer-auth registry holding acme/widget, plus its digests."""
    return seeded_registry()


@pytest.fixture
def fake_registry(seeded):
    registry, _ = seeded
    return registry


@pytest.fixture
def client(fake_registry, settings):
    """Client for registry.example.com/acme/widget backed by the fake registry."""
    c = RegistryClientV2(
        name="registry.example.com/acme/widget",
        settings=settings,
        transport=fake_registry.transport,
    )
    yield c
    c.close()


@pytest.fixture
def anonymous_registry():
    """Fake registry that needs no auth."""
    return FakeRegistry(auth=None)
