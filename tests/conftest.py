# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from realty_report.main import app  # ensures imports resolve; run tests from repo root
from realty_report.models.client import ModelClient
from realty_report.models.guards import CircuitBreaker, ModelGuards, TokenBudget

from doubles import FakeClock


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps(clock):
    """Recorded backoff waits; sleeping advances the fake clock instantly."""
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)
        clock.advance(seconds)

    fake_sleep.waits = waits
    return fake_sleep


@pytest.fixture
def make_guards(clock):
    def factory(threshold=5, cooldown=300.0, max_tokens=50_000, window=3600.0):
        return ModelGuards(
            breaker=CircuitBreaker(threshold, cooldown, clock=clock),
            budget=TokenBudget(max_tokens, window, clock=clock),
        )
    return factory


@pytest.fixture
def make_client(clock, sleeps, make_guards):
    def factory(model, guards=None, max_retries=3, backoff_base=2.0, backoff_max=30.0):
        return ModelClient(
            model,
            guards or make_guards(),
            max_retries=max_retries,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            sleep=sleeps,
            now=clock,
        )
    return factory
