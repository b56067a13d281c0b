"""
Model Cache Exceptions

Error hierarchy for the caching layer. Query engine errors are never
wrapped; they reach the caller unchanged.
"""

from __future__ import annotations

from typing import Any


class ModelCacheError(Exception):
    """Base class for all model cache errors."""


class CacheUnavailableError(ModelCacheError):
    """The cache backend could not be reached or failed mid-operation."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cache store unavailable during {operation}{detail}")


class CacheConfigurationError(ModelCacheError):
    """Invalid caching configuration (TTL, strategy, store capabilities)."""


class CacheSerializationError(CacheConfigurationError):
    """A query result cannot be encoded by the cache store."""

    def __init__(self, key: str, value_type: str, reason: str):
        self.key = key
        self.value_type = value_type
        super().__init__(f"Cannot serialize {value_type} for cache key {key}: {reason}")


class RecordNotFoundError(ModelCacheError):
    """sole() matched no rows."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"No {entity} record matches the query")


class MultipleRecordsFoundError(ModelCacheError):
    """sole() matched more than one row."""

    def __init__(self, entity: str, count: Any = None):
        self.entity = entity
        self.count = count
        super().__init__(f"More than one {entity} record matches the query")


__all__ = [
    "ModelCacheError",
    "CacheUnavailableError",
    "CacheConfigurationError",
    "CacheSerializationError",
    "RecordNotFoundError",
    "MultipleRecordsFoundError",
]
