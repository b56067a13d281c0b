"""
Cache Invalidation System
=========================

Event-driven cache invalidation. Entity mutation events are mapped to
the tags that must be flushed:

- SCOPED (default): a create flushes the entity's collection tag; an
  update, delete or restore flushes the collection tag and the identity
  tag of the mutated entity.
- BLANKET: any mutation flushes every cached entry of the entity type.

Stores without tag support fall back to forgetting the keys recorded in a
KeyRegistry when the entity opts in, and to no targeted invalidation
otherwise (entries then live until their TTL).
"""

from __future__ import annotations

import heapq
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog

from model_cache.caching.stores import CacheStore
from model_cache.entity import Cacheable, MutationEvent
from model_cache.exceptions import CacheConfigurationError, CacheUnavailableError

logger = structlog.get_logger(__name__)


class InvalidationStrategy(Enum):
    """Strategies for mapping mutation events to flushed tags."""

    SCOPED = "scoped"      # Collection tag, plus the identity tag on update/delete/restore
    BLANKET = "blanket"    # Everything cached for the entity type

    @classmethod
    def from_name(cls, name: str | InvalidationStrategy) -> InvalidationStrategy:
        if isinstance(name, InvalidationStrategy):
            return name
        try:
            return cls(name.lower())
        except ValueError as e:
            raise CacheConfigurationError(f"Unknown invalidation strategy: {name}") from e


@dataclass
class InvalidationEvent:
    """Represents a cache invalidation event."""

    entity_type: type[Cacheable]
    key: Any
    event_type: MutationEvent
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class InvalidationStats:
    """Statistics for cache invalidation monitoring."""

    events_received: int = 0
    events_processed: int = 0
    events_ignored: int = 0
    entries_invalidated: int = 0
    errors: int = 0


class KeyRegistry:
    """
    Tracks which cache keys were written under which tags.

    Used only with stores that cannot flush by tag, so invalidation can
    forget the affected keys one by one. Keys registered with a TTL are
    dropped once it has passed, so the registry only holds keys whose
    entry may still be stored. The registry is process-local.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._keys_by_tag: dict[str, set[str]] = defaultdict(set)
        self._tags_by_key: dict[str, tuple[str, ...]] = {}
        self._expires_at: dict[str, float] = {}
        self._deadlines: list[tuple[float, str]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tags_by_key)

    def register(self, key: str, tags: Iterable[str], ttl_seconds: int | None = None) -> None:
        """Record ``key`` under ``tags``; ``ttl_seconds=None`` means forever."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._discard(key)
            self._tags_by_key[key] = tuple(tags)
            for tag in self._tags_by_key[key]:
                self._keys_by_tag[tag].add(key)
            if ttl_seconds is not None:
                deadline = now + ttl_seconds
                self._expires_at[key] = deadline
                heapq.heappush(self._deadlines, (deadline, key))

    def pop(self, tags: Iterable[str]) -> set[str]:
        """Remove and return every key registered under any of ``tags``."""
        keys: set[str] = set()
        with self._lock:
            self._prune(self._clock())
            for tag in tags:
                keys |= self._keys_by_tag.get(tag, set())
            for key in keys:
                self._discard(key)
        return keys

    def keys_for(self, tag: str) -> set[str]:
        with self._lock:
            self._prune(self._clock())
            return set(self._keys_by_tag.get(tag, ()))

    def clear(self) -> None:
        with self._lock:
            self._keys_by_tag.clear()
            self._tags_by_key.clear()
            self._expires_at.clear()
            self._deadlines.clear()

    def _prune(self, now: float) -> None:
        while self._deadlines and self._deadlines[0][0] <= now:
            deadline, key = heapq.heappop(self._deadlines)
            # A re-registered key has a newer deadline
            if self._expires_at.get(key) == deadline:
                self._discard(key)

    def _discard(self, key: str) -> None:
        self._expires_at.pop(key, None)
        for tag in self._tags_by_key.pop(key, ()):
            members = self._keys_by_tag.get(tag)
            if members is not None:
                members.discard(key)
                if not members:
                    del self._keys_by_tag[tag]


class CacheInvalidator:
    """
    Event-driven cache invalidation manager.

    Receives entity mutation events and flushes the tags they affect.
    Reads are never blocked: a read that raced ahead of a flush may still
    store its result, which then lives until TTL or the next mutation.
    """

    def __init__(
        self,
        store: CacheStore,
        strategy: InvalidationStrategy | str = InvalidationStrategy.SCOPED,
        registry: KeyRegistry | None = None,
        fail_open: bool = False,
    ):
        self._store = store
        self._strategy = InvalidationStrategy.from_name(strategy)
        self._registry = registry if registry is not None else KeyRegistry()
        self._fail_open = fail_open
        self._stats = InvalidationStats()

        # Callbacks for custom invalidation logic
        self._callbacks: list[Callable[[InvalidationEvent], None]] = []

    @property
    def strategy(self) -> InvalidationStrategy:
        return self._strategy

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    def register_callback(self, callback: Callable[[InvalidationEvent], None]) -> None:
        """Register a callback for invalidation events."""
        self._callbacks.append(callback)

    # =========================================================================
    # Mutation hooks
    # =========================================================================

    def on_created(self, entity: Cacheable, metadata: dict | None = None) -> int:
        """Handle entity creation event."""
        return self.handle(self._event(entity, MutationEvent.CREATED, metadata))

    def on_updated(self, entity: Cacheable, metadata: dict | None = None) -> int:
        """Handle entity update event."""
        return self.handle(self._event(entity, MutationEvent.UPDATED, metadata))

    def on_deleted(self, entity: Cacheable, metadata: dict | None = None) -> int:
        """Handle entity deletion event."""
        return self.handle(self._event(entity, MutationEvent.DELETED, metadata))

    def on_restored(self, entity: Cacheable, metadata: dict | None = None) -> int:
        """Handle soft-delete restore event; treated like an update."""
        return self.handle(self._event(entity, MutationEvent.RESTORED, metadata))

    def handle(self, event: InvalidationEvent) -> int:
        """
        Flush the tags affected by ``event``.

        Returns:
            Number of cache entries removed
        """
        self._stats.events_received += 1
        entity_type = event.entity_type

        if not entity_type.invalidates_on(event.event_type):
            self._stats.events_ignored += 1
            logger.debug(
                "invalidation_event_ignored",
                entity=entity_type.entity_name(),
                event_type=event.event_type.value,
            )
            return 0

        tags = self.tags_for_event(event)
        count = self._flush(entity_type, tags)

        self._stats.entries_invalidated += count
        self._stats.events_processed += 1

        logger.debug(
            "cache_invalidated",
            entity=entity_type.entity_name(),
            event_type=event.event_type.value,
            key=event.key,
            tags=list(tags),
            entries=count,
        )

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning("invalidation_callback_error", error=str(e))

        return count

    def tags_for_event(self, event: InvalidationEvent) -> tuple[str, ...]:
        """Tags flushed for ``event`` under the configured strategy."""
        entity_type = event.entity_type
        if self._strategy is InvalidationStrategy.BLANKET:
            return (entity_type.entity_tag(),)
        if event.event_type is MutationEvent.CREATED:
            return (entity_type.cache_tag(),)
        return (entity_type.cache_tag(), entity_type.identity_tag(event.key))

    def flush_entity(self, entity_type: type[Cacheable]) -> int:
        """Drop every cached entry of ``entity_type``."""
        count = self._flush(entity_type, (entity_type.entity_tag(),))
        self._stats.entries_invalidated += count
        logger.info("cache_entity_flushed", entity=entity_type.entity_name(), entries=count)
        return count

    def get_stats(self) -> InvalidationStats:
        """Get invalidation statistics."""
        return self._stats

    def _flush(self, entity_type: type[Cacheable], tags: tuple[str, ...]) -> int:
        try:
            if self._store.supports_tags:
                return self._store.tags(tags).flush()

            if entity_type.track_keys_without_tags:
                count = 0
                for key in self._registry.pop(tags):
                    if self._store.forget(key):
                        count += 1
                return count

        except CacheUnavailableError as e:
            self._stats.errors += 1
            if not self._fail_open:
                raise
            logger.error("invalidation_error", entity=entity_type.entity_name(), tags=list(tags), error=str(e))
            return 0

        logger.warning(
            "cache_invalidation_unsupported",
            entity=entity_type.entity_name(),
            reason="store has no tag support and key tracking is disabled",
        )
        return 0

    @staticmethod
    def _event(entity: Cacheable, event_type: MutationEvent, metadata: dict | None) -> InvalidationEvent:
        return InvalidationEvent(
            entity_type=type(entity),
            key=entity.cache_key_value(),
            event_type=event_type,
            metadata=metadata or {},
        )


__all__ = [
    "CacheInvalidator",
    "InvalidationEvent",
    "InvalidationStats",
    "InvalidationStrategy",
    "KeyRegistry",
]
