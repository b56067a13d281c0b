"""
Cache Stores
============

Key/value backends the caching decorator writes to. Both stores support
tag-scoped writes and flushes, and expose ``describe(key)`` so callers
and tests can inspect expiration and tags without reaching into private
state.

- InMemoryCacheStore: process-local dictionary, optional tag support
- RedisCacheStore: Redis strings for values, Redis sets for tag membership
"""

from __future__ import annotations

import copy
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from model_cache.caching.serialization import UnsupportedValueError, decode, encode
from model_cache.exceptions import (
    CacheConfigurationError,
    CacheSerializationError,
    CacheUnavailableError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

STORE_ERRORS = (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError, OSError)

NEVER_EXPIRES = 0.0


class _Miss:
    """Marker for an absent key; distinct from a stored ``None``."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS: Any = _Miss()


@dataclass
class StoredEntry:
    """Inspection view of one stored value."""

    value: Any
    expires_at: float
    tags: tuple[str, ...] = ()

    @property
    def is_forever(self) -> bool:
        return self.expires_at == NEVER_EXPIRES

    def is_expired(self, now: float) -> bool:
        return not self.is_forever and now >= self.expires_at


@runtime_checkable
class TaggedCache(Protocol):
    """A view of a store whose writes and flush are scoped to a tag set."""

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool: ...

    def put_forever(self, key: str, value: Any) -> bool: ...

    def flush(self) -> int: ...


@runtime_checkable
class CacheStore(Protocol):
    """Key/value cache backend."""

    @property
    def supports_tags(self) -> bool: ...

    def get(self, key: str) -> Any: ...

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool: ...

    def put_forever(self, key: str, value: Any) -> bool: ...

    def forget(self, key: str) -> bool: ...

    def tags(self, tags: Sequence[str]) -> TaggedCache: ...

    def describe(self, key: str) -> StoredEntry | None: ...

    def flush(self) -> int: ...


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryCacheStore:
    """
    Process-local cache store.

    Values are copied on write and on read so callers never share mutable
    state with the cache. With ``serialize=True`` values round-trip through
    the JSON codec instead, which surfaces unserializable results the same
    way a remote store would.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        supports_tags: bool = True,
        serialize: bool = False,
    ):
        self._clock = clock
        self._supports_tags = supports_tags
        self._serialize = serialize
        self._entries: dict[str, StoredEntry] = {}
        self._tag_index: dict[str, set[str]] = defaultdict(set)
        self._lock = threading.RLock()

    @property
    def supports_tags(self) -> bool:
        return self._supports_tags

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            if entry.is_expired(self._clock()):
                self._remove(key)
                return MISS
            return self._unpack(entry.value)

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        return self._write(key, value, self._clock() + ttl_seconds, ())

    def put_forever(self, key: str, value: Any) -> bool:
        return self._write(key, value, NEVER_EXPIRES, ())

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._remove(key)

    def tags(self, tags: Sequence[str]) -> InMemoryTaggedCache:
        if not self._supports_tags:
            raise CacheConfigurationError("This cache store does not support tags")
        return InMemoryTaggedCache(self, tuple(tags))

    def describe(self, key: str) -> StoredEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return StoredEntry(self._unpack(entry.value), entry.expires_at, entry.tags)

    def keys(self) -> list[str]:
        now = self._clock()
        with self._lock:
            return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def flush(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._tag_index.clear()
            return count

    def _write(self, key: str, value: Any, expires_at: float, tags: tuple[str, ...]) -> bool:
        packed = self._pack(key, value)
        with self._lock:
            self._remove(key)
            self._entries[key] = StoredEntry(packed, expires_at, tags)
            for tag in tags:
                self._tag_index[tag].add(key)
        return True

    def _flush_tags(self, tags: Iterable[str]) -> int:
        count = 0
        with self._lock:
            for tag in tags:
                for key in self._tag_index.pop(tag, set()):
                    if self._remove(key):
                        count += 1
        return count

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry.tags:
            members = self._tag_index.get(tag)
            if members is not None:
                members.discard(key)
                if not members:
                    del self._tag_index[tag]
        return True

    def _pack(self, key: str, value: Any) -> Any:
        try:
            if not self._serialize:
                return copy.deepcopy(value)
            return encode(value)
        except (UnsupportedValueError, ValueError, TypeError, copy.Error) as e:
            raise CacheSerializationError(key, type(value).__name__, str(e)) from e

    def _unpack(self, value: Any) -> Any:
        if not self._serialize:
            return copy.deepcopy(value)
        return decode(value)


class InMemoryTaggedCache:
    """Tag-scoped view of an InMemoryCacheStore."""

    def __init__(self, store: InMemoryCacheStore, tags: tuple[str, ...]):
        self._store = store
        self._tags = tags

    @property
    def tag_names(self) -> tuple[str, ...]:
        return self._tags

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        return self._store._write(key, value, self._store._clock() + ttl_seconds, self._tags)

    def put_forever(self, key: str, value: Any) -> bool:
        return self._store._write(key, value, NEVER_EXPIRES, self._tags)

    def flush(self) -> int:
        return self._store._flush_tags(self._tags)


# =============================================================================
# Redis store
# =============================================================================


@dataclass
class RedisStoreOptions:
    key_prefix: str = "model_cache:"
    tag_prefix: str = "model_cache:tag:"
    max_value_bytes: int = 1048576
    scan_batch: int = 100


class RedisCacheStore:
    """
    Redis-backed cache store.

    Values are JSON-encoded strings. A tag is a Redis sorted set of the keys
    written under it, scored by each key's expiry time (``+inf`` for entries
    stored forever) so members whose entry has expired are pruned on the
    next write to the tag. Each tagged key also has a companion
    ``<key>:tags`` set so ``describe`` can report its tags. Connection
    failures surface as CacheUnavailableError.
    """

    def __init__(
        self,
        client: Any,
        options: RedisStoreOptions | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self._options = options or RedisStoreOptions()
        self._clock = clock

    @classmethod
    def from_url(
        cls,
        url: str,
        password: str | None = None,
        socket_timeout: float = 2.0,
        options: RedisStoreOptions | None = None,
    ) -> RedisCacheStore:
        client = redis.Redis.from_url(
            url,
            password=password,
            socket_timeout=socket_timeout,
            decode_responses=False,
        )
        return cls(client, options)

    @property
    def supports_tags(self) -> bool:
        return True

    @property
    def client(self) -> Any:
        return self._redis

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except STORE_ERRORS as e:
            raise CacheUnavailableError("ping", e) from e

    def get(self, key: str) -> Any:
        try:
            data = self._redis.get(key)
        except STORE_ERRORS as e:
            raise CacheUnavailableError("get", e) from e
        if data is None:
            return MISS
        return decode(data)

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        return self._write(key, value, ttl_seconds, ())

    def put_forever(self, key: str, value: Any) -> bool:
        return self._write(key, value, None, ())

    def forget(self, key: str) -> bool:
        try:
            removed: int = self._redis.delete(key, self._meta_key(key))
        except STORE_ERRORS as e:
            raise CacheUnavailableError("forget", e) from e
        return removed > 0

    def tags(self, tags: Sequence[str]) -> RedisTaggedCache:
        return RedisTaggedCache(self, tuple(tags))

    def describe(self, key: str) -> StoredEntry | None:
        try:
            pipe = self._redis.pipeline()
            pipe.get(key)
            pipe.pttl(key)
            pipe.smembers(self._meta_key(key))
            data, pttl, tag_members = pipe.execute()
        except STORE_ERRORS as e:
            raise CacheUnavailableError("describe", e) from e

        if data is None:
            return None
        expires_at = NEVER_EXPIRES if pttl is None or pttl < 0 else self._clock() + pttl / 1000
        tags = tuple(sorted(_text(t) for t in tag_members or ()))
        return StoredEntry(decode(data), expires_at, tags)

    def flush(self) -> int:
        """Delete every key under the configured prefix."""
        count = 0
        try:
            batch: list[Any] = []
            for key in self._redis.scan_iter(match=f"{self._options.key_prefix}*", count=self._options.scan_batch):
                batch.append(key)
                if len(batch) >= self._options.scan_batch:
                    count += self._redis.delete(*batch)
                    batch = []
            if batch:
                count += self._redis.delete(*batch)
        except STORE_ERRORS as e:
            raise CacheUnavailableError("flush", e) from e

        logger.info("cache_store_flushed", keys_removed=count)
        return count

    def _write(self, key: str, value: Any, ttl_seconds: int | None, tags: tuple[str, ...]) -> bool:
        """
        Store ``value``; returns False when it exceeds ``max_value_bytes``
        and nothing was written.
        """
        try:
            data = encode(value)
        except (UnsupportedValueError, ValueError) as e:
            raise CacheSerializationError(key, type(value).__name__, str(e)) from e

        if len(data) > self._options.max_value_bytes:
            logger.warning(
                "cache_value_too_large",
                key=key,
                size=len(data),
                max_size=self._options.max_value_bytes,
            )
            return False

        now = self._clock()
        score = float("inf") if ttl_seconds is None else now + ttl_seconds
        meta_key = self._meta_key(key)
        try:
            pipe = self._redis.pipeline()
            pipe.set(key, data, ex=ttl_seconds)
            pipe.delete(meta_key)
            if tags:
                pipe.sadd(meta_key, *tags)
                if ttl_seconds is not None:
                    pipe.expire(meta_key, ttl_seconds)
                for tag in tags:
                    tag_key = self._tag_key(tag)
                    # Drop members whose entry has already expired
                    pipe.zremrangebyscore(tag_key, "-inf", now)
                    pipe.zadd(tag_key, {key: score})
            pipe.execute()
        except STORE_ERRORS as e:
            raise CacheUnavailableError("put", e) from e
        return True

    def _flush_tags(self, tags: Iterable[str]) -> int:
        """
        Delete the entries of every tag in ``tags``.

        Only the members read from a tag are removed from it, in the same
        transaction that deletes their entries, so a key written under the
        tag while the flush runs stays tagged.
        """
        count = 0
        try:
            for tag in tags:
                tag_key = self._tag_key(tag)
                keys = [_text(m) for m in self._redis.zrange(tag_key, 0, -1) or ()]
                if not keys:
                    continue
                pipe = self._redis.pipeline(transaction=True)
                for key in keys:
                    pipe.delete(key, self._meta_key(key))
                pipe.zrem(tag_key, *keys)
                results = pipe.execute()
                count += sum(1 for removed in results[: len(keys)] if removed)
        except STORE_ERRORS as e:
            raise CacheUnavailableError("flush_tags", e) from e
        return count

    def _tag_key(self, tag: str) -> str:
        return f"{self._options.tag_prefix}{tag}"

    @staticmethod
    def _meta_key(key: str) -> str:
        return f"{key}:tags"


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisTaggedCache:
    """Tag-scoped view of a RedisCacheStore."""

    def __init__(self, store: RedisCacheStore, tags: tuple[str, ...]):
        self._store = store
        self._tags = tags

    @property
    def tag_names(self) -> tuple[str, ...]:
        return self._tags

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        return self._store._write(key, value, ttl_seconds, self._tags)

    def put_forever(self, key: str, value: Any) -> bool:
        return self._store._write(key, value, None, self._tags)

    def flush(self) -> int:
        return self._store._flush_tags(self._tags)


__all__ = [
    "MISS",
    "NEVER_EXPIRES",
    "CacheStore",
    "InMemoryCacheStore",
    "InMemoryTaggedCache",
    "RedisCacheStore",
    "RedisStoreOptions",
    "RedisTaggedCache",
    "StoredEntry",
    "TaggedCache",
]
