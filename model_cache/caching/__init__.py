"""
Model Query Caching
===================

Read-through caching of terminal query operations with tag-based,
event-driven invalidation and an explicit warmup mode.
"""

from model_cache.caching.cached_query import CachedQuery, CacheStats
from model_cache.caching.invalidation import (
    CacheInvalidator,
    InvalidationEvent,
    InvalidationStats,
    InvalidationStrategy,
    KeyRegistry,
)
from model_cache.caching.keys import CacheKey, CacheKeyBuilder, CollectionScope, IdentityScope, classify
from model_cache.caching.stores import (
    MISS,
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    StoredEntry,
)
from model_cache.caching.ttl import FOREVER, CallMode, ExpirationPolicy, TTLResolver

__all__ = [
    "CachedQuery",
    "CacheStats",
    "CacheInvalidator",
    "InvalidationEvent",
    "InvalidationStats",
    "InvalidationStrategy",
    "KeyRegistry",
    "CacheKey",
    "CacheKeyBuilder",
    "CollectionScope",
    "IdentityScope",
    "classify",
    "MISS",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "StoredEntry",
    "FOREVER",
    "CallMode",
    "ExpirationPolicy",
    "TTLResolver",
]
