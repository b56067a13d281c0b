"""
Model Cache
===========

Composition root wiring a query engine, a cache store, settings and the
invalidator together. Applications create one ModelCache and pass it
where it is needed; there is no process-wide instance.
"""

from __future__ import annotations

from typing import Any

import structlog

from model_cache.caching.cached_query import CachedQuery, CacheStats
from model_cache.caching.invalidation import CacheInvalidator, InvalidationStats, KeyRegistry
from model_cache.caching.stores import CacheStore, InMemoryCacheStore, RedisCacheStore, RedisStoreOptions
from model_cache.config import CacheSettings, get_settings
from model_cache.entity import Cacheable
from model_cache.exceptions import CacheUnavailableError
from model_cache.logging import configure_logging
from model_cache.query.engine import QueryEngine

logger = structlog.get_logger(__name__)


def create_store(settings: CacheSettings | None = None) -> CacheStore:
    """
    Build the cache store described by ``settings``.

    Redis is used when ``redis_url`` is set and answers a ping. When it
    does not, CacheUnavailableError is raised unless ``fail_open`` is set,
    in which case an in-memory store is used and a warning logged.
    """
    settings = settings or get_settings()

    if not settings.redis_url:
        logger.info("model_cache_store_initialized", backend="memory")
        return InMemoryCacheStore()

    store = RedisCacheStore.from_url(
        settings.redis_url,
        password=settings.redis_password,
        socket_timeout=settings.redis_socket_timeout,
        options=RedisStoreOptions(
            key_prefix=settings.key_prefix,
            tag_prefix=f"{settings.key_prefix}tag:",
            max_value_bytes=settings.max_cached_result_bytes,
        ),
    )
    try:
        store.ping()
    except CacheUnavailableError as e:
        if not settings.fail_open:
            raise
        logger.warning("cache_store_redis_failed", error=str(e), fallback="memory")
        return InMemoryCacheStore()

    logger.info("model_cache_store_initialized", backend="redis", redis_url=settings.redis_url)
    return store


class ModelCache:
    """
    Entry point for cached queries and invalidation.

        cache = ModelCache(engine, store)
        cache.query(User).where("active", True).get()
        cache.warmup(User).count()
        cache.on_updated(user)
    """

    def __init__(
        self,
        engine: QueryEngine,
        store: CacheStore | None = None,
        settings: CacheSettings | None = None,
    ):
        self._settings = settings or get_settings()
        self._engine = engine
        self._store = store if store is not None else create_store(self._settings)
        self._registry = KeyRegistry()
        self._stats = CacheStats()
        self._invalidator = CacheInvalidator(
            self._store,
            strategy=self._settings.invalidation_strategy,
            registry=self._registry,
            fail_open=self._settings.fail_open,
        )

    @classmethod
    def from_settings(
        cls,
        engine: QueryEngine,
        settings: CacheSettings | None = None,
        configure_logs: bool = True,
    ) -> ModelCache:
        """
        Startup path: configure logging, then build the store and the cache
        from ``settings``.

        Args:
            engine: Query engine the cache decorates
            settings: Defaults to ``get_settings()``
            configure_logs: Apply ``log_level`` and ``json_logs`` to structlog
        """
        settings = settings or get_settings()
        if configure_logs:
            configure_logging(level=settings.log_level, json_output=settings.json_logs)
        return cls(engine, create_store(settings), settings=settings)

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def settings(self) -> CacheSettings:
        return self._settings

    @property
    def invalidator(self) -> CacheInvalidator:
        return self._invalidator

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def query(self, entity_type: type[Cacheable]) -> CachedQuery:
        """New cached query over ``entity_type``."""
        return CachedQuery(
            entity_type,
            self._engine,
            self._store,
            settings=self._settings,
            registry=self._registry,
            stats=self._stats,
        )

    def warmup(self, entity_type: type[Cacheable]) -> CachedQuery:
        """New cached query in warmup mode."""
        return self.query(entity_type).warmup()

    # =========================================================================
    # Mutation events
    # =========================================================================

    def on_created(self, entity: Cacheable, metadata: dict | None = None) -> int:
        return self._invalidator.on_created(entity, metadata)

    def on_updated(self, entity: Cacheable, metadata: dict | None = None) -> int:
        return self._invalidator.on_updated(entity, metadata)

    def on_deleted(self, entity: Cacheable, metadata: dict | None = None) -> int:
        return self._invalidator.on_deleted(entity, metadata)

    def on_restored(self, entity: Cacheable, metadata: dict | None = None) -> int:
        return self._invalidator.on_restored(entity, metadata)

    def flush(self, entity_type: type[Cacheable]) -> int:
        """Drop every cached query of ``entity_type``."""
        return self._invalidator.flush_entity(entity_type)

    def get_stats(self) -> dict[str, Any]:
        """Combined read and invalidation statistics."""
        invalidation: InvalidationStats = self._invalidator.get_stats()
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "writes": self._stats.writes,
            "errors": self._stats.errors + invalidation.errors,
            "hit_rate": round(self._stats.hit_rate, 4),
            "invalidation_events": invalidation.events_processed,
            "entries_invalidated": invalidation.entries_invalidated,
        }


__all__ = ["ModelCache", "create_store"]
