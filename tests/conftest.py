"""Shared fixtures: in-memory stores, fixed domains and a ticking clock."""

from datetime import datetime, timedelta, timezone

import pytest

from chainwitness.core import DomainConfig, Hasher, WitnessEngine
from chainwitness.db import InMemoryWitnessStore


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def domain_config():
    return DomainConfig(domain_id=Hasher.digest("domain-alpha"))


@pytest.fixture
def store():
    return InMemoryWitnessStore()


@pytest.fixture
def engine(store, domain_config, clock):
    return WitnessEngine(store, domain_config, clock=clock)


@pytest.fixture
def foreign_engine():
    """A second, independent domain (import target)."""
    return WitnessEngine(
        InMemoryWitnessStore(),
        DomainConfig(domain_id=Hasher.digest("domain-beta")),
        clock=TickingClock(datetime(2024, 6, 1, 8, 30, 0, tzinfo=timezone.utc)),
    )
