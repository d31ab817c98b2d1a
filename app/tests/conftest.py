"""Shared fixtures for the cache core tests"""

import pytest

from app.core.circuit_breaker import CircuitBreaker
from app.services.cache_store import CacheStore
from app.services.enhancement import EnhancementService
from app.tests.fakes import HOUR, FakeClock, FakeEnricher, FakeSource, cex_records, dex_records


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CacheStore(
        breaker=CircuitBreaker(threshold=3, cooldown_seconds=600),
        cache_durations={"cex": 72 * HOUR, "dex": 72 * HOUR},
        clock=clock,
    )


@pytest.fixture
def cex_source():
    return FakeSource(cex_records(25))


@pytest.fixture
def dex_source():
    return FakeSource(dex_records(12))


@pytest.fixture
def enricher():
    return FakeEnricher()


@pytest.fixture
def service(store, cex_source, dex_source, enricher):
    return EnhancementService(
        store=store,
        sources={"cex": cex_source, "dex": dex_source},
        enricher=enricher,
        batch_size=10,
        batch_delay=0,
    )
