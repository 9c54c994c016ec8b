# Fake implementations for testing

from .fake_registry import FakeImageDestination, FakeImageSource, FakeReference, FakeRegistryTransport

__all__ = ["FakeRegistryTransport", "FakeReference", "FakeImageSource", "FakeImageDestination"]
