"""
Tests for Cache Invalidation System
===================================

Tests for model_cache/caching/invalidation.py
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from model_cache.caching.invalidation import (
    CacheInvalidator,
    InvalidationEvent,
    InvalidationStats,
    InvalidationStrategy,
    KeyRegistry,
)
from model_cache.caching.stores import MISS, InMemoryCacheStore
from model_cache.entity import MutationEvent
from model_cache.exceptions import CacheConfigurationError, CacheUnavailableError
from model_cache.manager import ModelCache
from tests.stubs import AppendOnlyUser, EntityRepository, TrackedUser, User


class TestInvalidationEvent:
    """Tests for InvalidationEvent dataclass."""

    def test_event_creation_with_defaults(self):
        """Test creating an event with default values."""
        event = InvalidationEvent(entity_type=User, key=1, event_type=MutationEvent.CREATED)

        assert event.key == 1
        assert isinstance(event.timestamp, datetime)
        assert event.metadata == {}


class TestInvalidationStats:
    """Tests for InvalidationStats dataclass."""

    def test_stats_default_values(self):
        """Test default values for stats."""
        stats = InvalidationStats()

        assert stats.events_received == 0
        assert stats.events_processed == 0
        assert stats.events_ignored == 0
        assert stats.entries_invalidated == 0
        assert stats.errors == 0


class TestInvalidationStrategy:
    def test_from_name(self):
        assert InvalidationStrategy.from_name("BLANKET") is InvalidationStrategy.BLANKET
        assert InvalidationStrategy.from_name(InvalidationStrategy.SCOPED) is InvalidationStrategy.SCOPED

    def test_unknown_name(self):
        with pytest.raises(CacheConfigurationError):
            InvalidationStrategy.from_name("everything")


class TestKeyRegistry:
    def test_pop_removes_keys_from_every_tag(self):
        registry = KeyRegistry()
        registry.register("k1", ["a", "all"])
        registry.register("k2", ["b", "all"])

        assert registry.pop(["a"]) == {"k1"}
        assert registry.keys_for("all") == {"k2"}
        assert registry.pop(["a"]) == set()

    def test_clear(self):
        registry = KeyRegistry()
        registry.register("k1", ["a"])
        registry.clear()

        assert registry.keys_for("a") == set()
        assert len(registry) == 0

    def test_expired_keys_are_dropped(self, clock):
        registry = KeyRegistry(clock=clock)
        registry.register("k1", ["a"], ttl_seconds=1)
        registry.register("k2", ["a"])

        clock.advance(1)

        assert registry.keys_for("a") == {"k2"}
        assert len(registry) == 1

    def test_unlimited_keys_are_kept(self, clock):
        registry = KeyRegistry(clock=clock)
        registry.register("k1", ["a"])

        clock.advance(10**9)

        assert registry.pop(["a"]) == {"k1"}

    def test_reregistered_key_keeps_newer_deadline(self, clock):
        registry = KeyRegistry(clock=clock)
        registry.register("k1", ["a"], ttl_seconds=1)
        registry.register("k1", ["b"], ttl_seconds=60)

        clock.advance(1)

        assert registry.keys_for("a") == set()
        assert registry.keys_for("b") == {"k1"}


class TestTagsForEvent:
    """Mapping of events to flushed tags."""

    @pytest.fixture
    def scoped(self, store):
        return CacheInvalidator(store)

    @pytest.mark.parametrize(
        "event_type",
        [MutationEvent.UPDATED, MutationEvent.DELETED, MutationEvent.RESTORED],
    )
    def test_scoped_change_flushes_collection_and_identity(self, scoped, event_type):
        event = InvalidationEvent(entity_type=User, key=7, event_type=event_type)

        assert scoped.tags_for_event(event) == ("users:collection", "users:id:7")

    def test_scoped_create_flushes_collection(self, scoped):
        event = InvalidationEvent(entity_type=User, key=7, event_type=MutationEvent.CREATED)

        assert scoped.tags_for_event(event) == ("users:collection",)

    def test_blanket_flushes_entity_tag(self, store):
        invalidator = CacheInvalidator(store, strategy="blanket")
        event = InvalidationEvent(entity_type=User, key=7, event_type=MutationEvent.CREATED)

        assert invalidator.tags_for_event(event) == ("users:all",)


class TestScopedInvalidation:
    """End-to-end scoped invalidation through ModelCache."""

    def test_create_invalidates_collection_queries(self, cache, users, engine):
        users.create(name="A")
        cache.query(User).get()
        executions = engine.executions

        users.create(name="B")
        rows = cache.query(User).get()

        assert engine.executions == executions + 1
        assert len(rows) == 2

    def test_create_invalidates_aggregates(self, cache, users):
        users.create(name="A", score=1)
        assert cache.query(User).count() == 1
        assert cache.query(User).sum("score") == 1

        users.create(name="B", score=2)

        assert cache.query(User).count() == 2
        assert cache.query(User).sum("score") == 3

    def test_update_invalidates_find(self, cache, users):
        user = users.create(name="Old")
        assert cache.query(User).find(user.id)["name"] == "Old"

        users.update(user, name="New")

        assert cache.query(User).find(user.id)["name"] == "New"

    def test_update_keeps_unrelated_identity_entries(self, cache, users, engine):
        a = users.create(name="A")
        b = users.create(name="B")
        cache.query(User).find(a.id)
        cache.query(User).find(b.id)
        executions = engine.executions

        users.update(a, name="A2")
        cache.query(User).find(b.id)

        assert engine.executions == executions

    def test_create_keeps_identity_entries(self, cache, users, engine):
        a = users.create(name="A")
        cache.query(User).find(a.id)
        executions = engine.executions

        users.create(name="B")
        cache.query(User).find(a.id)

        assert engine.executions == executions

    def test_delete_invalidates(self, cache, users):
        user = users.create(name="Gone")
        assert cache.query(User).find(user.id) is not None
        assert cache.query(User).count() == 1

        users.delete(user)

        assert cache.query(User).find(user.id) is None
        assert cache.query(User).count() == 0

    def test_restore_invalidates(self, cache, users):
        user = users.create(name="Back")
        users.delete(user)
        assert cache.query(User).find(user.id) is None
        assert cache.query(User).exists() is False

        users.restore(user)

        assert cache.query(User).find(user.id)["name"] == "Back"
        assert cache.query(User).exists() is True

    def test_find_many_invalidated_by_any_member(self, cache, users):
        a = users.create(name="A")
        b = users.create(name="B")
        cache.query(User).find_many([a.id, b.id])

        users.update(b, name="B2")

        names = sorted(r["name"] for r in cache.query(User).find_many([a.id, b.id]))
        assert names == ["A", "B2"]

    def test_returns_entries_removed(self, cache, users):
        users.create(name="A")
        cache.query(User).get()
        cache.query(User).count()

        assert cache.on_created(User(id=99, name="Z")) == 2

    def test_ignored_event(self, engine, store, settings):
        cache = ModelCache(engine, store, settings=settings)
        repo = EntityRepository(AppendOnlyUser, engine, cache)
        user = repo.create(name="A")
        cache.query(AppendOnlyUser).get()
        executions = engine.executions

        repo.update(user, name="B")
        rows = cache.query(AppendOnlyUser).get()

        assert engine.executions == executions
        assert rows[0]["name"] == "A"
        assert cache.invalidator.get_stats().events_ignored == 1


class TestBlanketInvalidation:
    """Blanket strategy flushes everything of the entity type."""

    @pytest.fixture
    def blanket_cache(self, engine, store, settings):
        return ModelCache(engine, store, settings=settings.model_copy(update={"invalidation_strategy": "blanket"}))

    def test_create_flushes_identity_entries(self, blanket_cache, engine):
        users = EntityRepository(User, engine, blanket_cache)
        a = users.create(name="A")
        blanket_cache.query(User).find(a.id)
        blanket_cache.query(User).get()
        executions = engine.executions

        users.create(name="B")
        blanket_cache.query(User).find(a.id)
        blanket_cache.query(User).get()

        assert engine.executions == executions + 2

    def test_flush_entity(self, cache, users, store):
        users.create(name="A")
        cache.query(User).get()
        cache.query(User).find(1)

        assert cache.flush(User) == 2
        assert store.keys() == []


class TestStoresWithoutTags:
    """Fallbacks for stores that cannot flush by tag."""

    @pytest.fixture
    def untagged_store(self, clock):
        return InMemoryCacheStore(clock=clock, supports_tags=False)

    def test_tracked_keys_are_forgotten(self, engine, untagged_store, settings):
        cache = ModelCache(engine, untagged_store, settings=settings)
        repo = EntityRepository(TrackedUser, engine, cache)
        user = repo.create(name="A")
        cache.query(TrackedUser).get()
        cache.query(TrackedUser).find(user.id)

        repo.update(user, name="B")

        assert untagged_store.keys() == []
        assert cache.query(TrackedUser).find(user.id)["name"] == "B"

    def test_tracked_create_keeps_identity_entries(self, engine, untagged_store, settings):
        cache = ModelCache(engine, untagged_store, settings=settings)
        repo = EntityRepository(TrackedUser, engine, cache)
        user = repo.create(name="A")
        cache.query(TrackedUser).get()
        cache.query(TrackedUser).find(user.id)

        repo.create(name="B")

        assert len(untagged_store.keys()) == 1

    def test_untracked_entries_live_until_ttl(self, engine, untagged_store, settings, clock):
        cache = ModelCache(engine, untagged_store, settings=settings)
        repo = EntityRepository(User, engine, cache)
        repo.create(name="A")
        cache.query(User).get()

        assert repo.create(name="B") is not None
        assert len(cache.query(User).get()) == 1

        clock.advance(600)
        assert len(cache.query(User).get()) == 2


class TestCallbacksAndErrors:
    def test_callbacks_receive_events(self, cache, users):
        received = []
        cache.invalidator.register_callback(received.append)

        user = users.create(name="A")

        assert len(received) == 1
        assert received[0].event_type is MutationEvent.CREATED
        assert received[0].key == user.id

    def test_failing_callback_does_not_break_invalidation(self, cache, users, store):
        cache.invalidator.register_callback(MagicMock(side_effect=RuntimeError("boom")))
        users.create(name="A")
        cache.query(User).get()

        assert cache.on_created(User(id=5, name="B")) == 1
        assert store.keys() == []

    def test_unavailable_store_raises(self):
        store = MagicMock()
        store.supports_tags = True
        store.tags.return_value.flush.side_effect = CacheUnavailableError("flush_tags")
        invalidator = CacheInvalidator(store)

        with pytest.raises(CacheUnavailableError):
            invalidator.on_updated(User(id=1, name="A"))

        assert invalidator.get_stats().errors == 1

    def test_unavailable_store_fail_open(self):
        store = MagicMock()
        store.supports_tags = True
        store.tags.return_value.flush.side_effect = CacheUnavailableError("flush_tags")
        invalidator = CacheInvalidator(store, fail_open=True)

        assert invalidator.on_updated(User(id=1, name="A")) == 0
        assert invalidator.get_stats().errors == 1

    def test_stats(self, cache, users):
        users.create(name="A")
        cache.query(User).get()
        users.create(name="B")

        stats = cache.invalidator.get_stats()

        assert stats.events_received == 2
        assert stats.events_processed == 2
        assert stats.entries_invalidated == 1

    def test_miss_after_flush(self, cache, users, store):
        users.create(name="A")
        query = cache.query(User)
        query.get()
        key = store.keys()[0]

        users.create(name="B")

        assert store.get(key) is MISS
