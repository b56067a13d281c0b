"""
Model Cache
===========

Transparent caching in front of a query engine: terminal read operations
are served from a cache store until the entity's TTL expires or a
mutation event flushes the affected tags.
"""

from model_cache.caching import (
    FOREVER,
    MISS,
    CachedQuery,
    CacheInvalidator,
    CacheStats,
    InMemoryCacheStore,
    InvalidationStrategy,
    RedisCacheStore,
)
from model_cache.config import CacheSettings, get_settings
from model_cache.entity import Cacheable, MutationEvent
from model_cache.exceptions import (
    CacheConfigurationError,
    CacheSerializationError,
    CacheUnavailableError,
    ModelCacheError,
    MultipleRecordsFoundError,
    RecordNotFoundError,
)
from model_cache.manager import ModelCache, create_store
from model_cache.query import Page, QueryDescriptor, QueryEngine, SimplePage, fingerprint

__version__ = "1.0.0"

__all__ = [
    "FOREVER",
    "MISS",
    "CachedQuery",
    "CacheInvalidator",
    "CacheStats",
    "InMemoryCacheStore",
    "InvalidationStrategy",
    "RedisCacheStore",
    "CacheSettings",
    "get_settings",
    "Cacheable",
    "MutationEvent",
    "CacheConfigurationError",
    "CacheSerializationError",
    "CacheUnavailableError",
    "ModelCacheError",
    "MultipleRecordsFoundError",
    "RecordNotFoundError",
    "ModelCache",
    "create_store",
    "Page",
    "QueryDescriptor",
    "QueryEngine",
    "SimplePage",
    "fingerprint",
]
