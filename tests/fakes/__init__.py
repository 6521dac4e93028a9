# Fake implementations for testing

from .fake_registry import FakeRegistry, seeded_registry

__all__ = ["FakeRegistry", "seeded_registry"]
