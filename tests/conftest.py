"""
Model Cache - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from model_cache.caching.stores import InMemoryCacheStore
from model_cache.config import CacheSettings
from model_cache.manager import ModelCache
from tests.stubs import EntityRepository, FakeQueryEngine, User


class FrozenClock:
    """Manually advanced clock for TTL assertions."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> CacheSettings:
    """Settings independent of the environment and any .env file."""
    return CacheSettings(_env_file=None, default_ttl_seconds=600, key_prefix="test:")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def engine() -> FakeQueryEngine:
    return FakeQueryEngine()


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(engine: FakeQueryEngine, store: InMemoryCacheStore, settings: CacheSettings) -> ModelCache:
    return ModelCache(engine, store, settings=settings)


@pytest.fixture
def users(engine: FakeQueryEngine, cache: ModelCache) -> EntityRepository:
    return EntityRepository(User, engine, cache)


@pytest.fixture
def assert_second_call_from_cache(engine: FakeQueryEngine) -> Callable[[Callable[[], Any]], tuple[Any, Any]]:
    """
    Run a query twice: the first call must execute against the engine, the
    second must be served from cache.
    """

    def _run(query: Callable[[], Any]) -> tuple[Any, Any]:
        before = engine.executions
        first = query()
        after_first = engine.executions
        second = query()
        after_second = engine.executions

        assert after_first > before, "First call should execute the query"
        assert after_second == after_first, "Second call must be served from cache"
        return first, second

    return _run
