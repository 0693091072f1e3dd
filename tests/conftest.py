"""Pytest configuration and shared fixtures."""

import random

import pytest

from onetouch.pairing.codes import CodeGenerator
from onetouch.pairing.service import PairingService
from onetouch.pairing.store import MemorySessionStore


class FakeClock:
    """Controllable clock returning Unix seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from onetouch.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def store():
    """Empty in-memory session store."""
    return MemorySessionStore()


@pytest.fixture
def service(store, clock):
    """Pairing service on the memory store with a fake clock and seeded codes."""
    return PairingService(
        store=store,
        code_generator=CodeGenerator(rng=random.Random(1234)),
        clock=clock,
    )
