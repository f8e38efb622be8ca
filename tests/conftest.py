"""Shared fixtures for rate limiting tests."""

import pytest

from admission_gate.rl import MemoryWindowStore


class FakeClock:
    """Controllable time source for limiters."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A clock frozen at a fixed epoch time."""
    return FakeClock()


@pytest.fixture
def store():
    """A fresh in-memory window store per test."""
    return MemoryWindowStore()


@pytest.fixture(autouse=True)
def clear_bypass_flag(monkeypatch):
    """Make sure a developer's SKIP_RATE_LIMIT never leaks into tests."""
    monkeypatch.delenv("SKIP_RATE_LIMIT", raising=False)
