# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- fakeredis-backed ValkeyCache and an in-memory cache
- A controllable millisecond clock
- A wired tracker stack (SessionTracker, EventQueue, EventEmitter) that
  delivers to a MemoryCollector without a background worker
- Experiment, funnel and cohort engines bound to that stack
"""

import random

import fakeredis
import pytest

from beacon.core.cohorts import CohortEngine
from beacon.core.emitter import EventEmitter
from beacon.core.experiments import ExperimentRegistry
from beacon.core.funnels import FunnelEngine
from beacon.core.session import SessionTracker
from beacon.delivery import EventQueue
from beacon.infrastructure.assignment_store import AssignmentStore
from beacon.infrastructure.cache import MemoryCache, ValkeyCache
from beacon.infrastructure.collectors import MemoryCollector
from beacon.infrastructure.consent import ConsentStore

# 2024-01-15 00:00:00 UTC (a Monday)
START_MS = 1_705_276_800_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture()
def fake_redis():
    """A clean fakeredis instance for each test.

    Uses decode_responses=True to match the real ValkeyCache behavior.
    """
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def fake_cache(fake_redis):
    """A ValkeyCache with its internal client replaced by fakeredis.

    This avoids needing a real Valkey/Redis server for unit tests while
    exercising the full ValkeyCache API surface.
    """
    cache = ValkeyCache.__new__(ValkeyCache)
    cache._client = fake_redis
    cache._url = "redis://fake:6379"
    return cache


@pytest.fixture()
def memory_cache():
    return MemoryCache()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def collector():
    return MemoryCollector()


@pytest.fixture()
def sessions(clock):
    return SessionTracker(
        landing_url="https://example.com/?utm_source=news&utm_medium=email&utm_campaign=spring",
        referrer="https://news.example.org/",
        clock=clock,
    )


@pytest.fixture()
def queue(collector, sessions):
    """EventQueue with a large batch size so nothing flushes unless asked to."""
    q = EventQueue(collector, sessions.snapshot, batch_size=1000, send_timeout=1.0)
    yield q
    q._executor.shutdown(wait=False)


@pytest.fixture()
def consent(memory_cache):
    return ConsentStore(memory_cache, key="test:consent", default_granted=True)


@pytest.fixture()
def emitter(sessions, queue, consent, clock):
    return EventEmitter(sessions, queue, consent=consent, clock=clock)


@pytest.fixture()
def registry(emitter, memory_cache, clock):
    return ExperimentRegistry(
        emitter,
        store=AssignmentStore(memory_cache),
        rng=random.Random(1234),
        clock=clock,
    )


@pytest.fixture()
def funnels(emitter, clock):
    return FunnelEngine(emitter, clock=clock)


@pytest.fixture()
def cohorts(emitter, clock):
    return CohortEngine(emitter, clock=clock)
