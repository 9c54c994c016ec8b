"""Root pytest configuration for imagestream-transport tests."""
import pytest

from imagestream_transport.fakes import FakeRegistryTransport
from imagestream_transport.settings import Settings
from imagestream_transport.transport import ImageStreamTransport

from .fakes.fake_api import FakeImageStreamApi
from .helpers.images import INTERNAL_HOST, MANIFEST, MANIFEST_DIGEST, NAMESPACE, STREAM


# Set up test environment variables
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Keep tests independent of the caller's environment."""
    for key in ("IMAGESTREAM_API_URL", "IMAGESTREAM_TOKEN", "IMAGESTREAM_USERNAME",
                "IMAGESTREAM_PASSWORD", "IMAGESTREAM_INSECURE", "IMAGESTREAM_HTTP_TIMEOUT",
                "IMAGESTREAM_HTTP_RETRY"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(
        api_url="https://api.cluster.example.com:8443",
        bearer_token="test-token",
    )


@pytest.fixture
def api():
    """Fake image-stream API."""
    return FakeImageStreamApi()


@pytest.fixture
def registry():
    """Fake delegate registry transport."""
    return FakeRegistryTransport()


@pytest.fixture
def transport(settings, registry, api):
    """Image stream transport wired to the fakes."""
    return ImageStreamTransport(settings, delegate=registry, http_transport=api.transport())


@pytest.fixture
def seeded(api, registry):
    """
    Stream myproject/app with tag v1 -> MANIFEST, stored in the fake registry
    under the repository the tag event points to.
    """
    registry.put_manifest(f"{NAMESPACE}/{STREAM}", MANIFEST, tag="v1")
    api.add_stream(NAMESPACE, STREAM, {
        "v1": [(f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}", MANIFEST_DIGEST)],
    })
    api.add_image(MANIFEST_DIGEST)
    return api
