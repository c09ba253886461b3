"""Test fixtures for rolling fetch."""

from .transport import FakeTransport

__all__ = [
    # Scripted in-memory transport
    "FakeTransport",
]
