"""
Cached Query
============

Read-through caching decorator around a QueryEngine. Every terminal read
operation derives a cache key from the query fingerprint, its own
discriminator and its result-shaping arguments, serves a stored result
when one exists, and otherwise executes the query and stores the result
under the entity's expiration policy and tags.

Warmup mode skips the cache read, always executes, and stores the result
with no expiration.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from model_cache.caching.invalidation import KeyRegistry
from model_cache.caching.keys import CacheKey, CacheKeyBuilder
from model_cache.caching.stores import MISS, CacheStore
from model_cache.caching.ttl import CallMode, ExpirationPolicy, TTLResolver
from model_cache.config import CacheSettings, get_settings
from model_cache.entity import Cacheable
from model_cache.exceptions import (
    CacheUnavailableError,
    MultipleRecordsFoundError,
    RecordNotFoundError,
)
from model_cache.query.descriptor import Direction, Operator, QueryDescriptor, normalize_columns
from model_cache.query.engine import Page, QueryEngine, Row, SimplePage
from model_cache.query.fingerprint import fingerprint

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_UNSET: Any = object()

DEFAULT_PER_PAGE = 15


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


def _row_field(column: str) -> str:
    return column.rsplit(".", 1)[-1]


class CachedQuery:
    """
    Caching decorator for one entity type's queries.

    Query-building methods replace the instance's immutable descriptor
    and return ``self``, so the warmup flag and the memoized TTL carry
    through a chain:

        users = CachedQuery(User, engine, store)
        active = users.where("active", True).order_by("name").get()

    The instance is not shared between threads; build one per call chain.
    """

    def __init__(
        self,
        entity_type: type[Cacheable],
        engine: QueryEngine,
        store: CacheStore,
        settings: CacheSettings | None = None,
        registry: KeyRegistry | None = None,
        stats: CacheStats | None = None,
        descriptor: QueryDescriptor | None = None,
    ):
        settings = settings or get_settings()
        self._entity_type = entity_type
        self._engine = engine
        self._store = store
        self._registry = registry
        self._stats = stats if stats is not None else CacheStats()
        self._descriptor = descriptor or QueryDescriptor(entity=entity_type.entity_name())
        self._keys = CacheKeyBuilder(entity_type, settings.key_prefix)
        self._ttl = TTLResolver(settings.default_ttl_seconds)
        self._fail_open = settings.fail_open
        self._enabled = settings.enabled and entity_type.cache_enabled
        self._mode = CallMode.NORMAL
        self._logger = logger.bind(entity=entity_type.entity_name())

    def __repr__(self) -> str:
        return f"CachedQuery({self._entity_type.__name__}, {fingerprint(self._descriptor)!r}, mode={self._mode.value})"

    # =========================================================================
    # State
    # =========================================================================

    @property
    def entity_type(self) -> type[Cacheable]:
        return self._entity_type

    @property
    def descriptor(self) -> QueryDescriptor:
        return self._descriptor

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def is_warmup(self) -> bool:
        return self._mode is CallMode.WARMUP

    def warmup(self) -> CachedQuery:
        """
        Force the next operations to execute and store results forever.

        Idempotent; set it before calling a terminal operation.
        """
        self._mode = CallMode.WARMUP
        return self

    # =========================================================================
    # Query building
    # =========================================================================

    def where(self, column: str, operator: Any, value: Any = _UNSET) -> CachedQuery:
        """``where("active", True)`` or ``where("score", ">=", 10)``."""
        if value is _UNSET:
            operator, value = Operator.EQ, operator
        self._descriptor = self._descriptor.where(column, operator, value)
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> CachedQuery:
        self._descriptor = self._descriptor.where_in(column, values)
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> CachedQuery:
        self._descriptor = self._descriptor.where_in(column, values, negate=True)
        return self

    def where_null(self, column: str) -> CachedQuery:
        self._descriptor = self._descriptor.where_null(column)
        return self

    def where_not_null(self, column: str) -> CachedQuery:
        self._descriptor = self._descriptor.where_null(column, negate=True)
        return self

    def order_by(self, column: str, direction: Direction | str = Direction.ASC) -> CachedQuery:
        self._descriptor = self._descriptor.order_by(column, direction)
        return self

    def order_by_desc(self, column: str) -> CachedQuery:
        return self.order_by(column, Direction.DESC)

    def select(self, columns: Sequence[str] | str) -> CachedQuery:
        self._descriptor = self._descriptor.select(columns)
        return self

    def limit(self, limit: int | None) -> CachedQuery:
        self._descriptor = self._descriptor.take(limit)
        return self

    def offset(self, offset: int | None) -> CachedQuery:
        self._descriptor = self._descriptor.skip(offset)
        return self

    # =========================================================================
    # Collections
    # =========================================================================

    def get(self, columns: Sequence[str] | str | None = None) -> list[Row]:
        """All matching rows."""
        descriptor = self._projected(columns)
        return self._remember("get", (), descriptor, lambda: self._engine.run_collection(descriptor))

    def first(self, columns: Sequence[str] | str | None = None) -> Row | None:
        descriptor = self._projected(columns).take(1)
        return self._remember("first", (), descriptor, lambda: self._engine.run_single(descriptor))

    def find(self, entity_id: Any, columns: Sequence[str] | str | None = None) -> Row | None:
        """Row with primary key ``entity_id``, or None; cached under its identity tag."""
        descriptor = self._projected(columns).where(self._entity_type.primary_key, Operator.EQ, entity_id)
        return self._remember("find", (), descriptor, lambda: self._engine.run_single(descriptor))

    def find_many(self, ids: Iterable[Any], columns: Sequence[str] | str | None = None) -> list[Row]:
        """
        Rows whose primary key is in ``ids``.

        The combined result is one entry keyed by the whole id list; a
        different id list is a different entry.
        """
        ids = list(ids)
        if not ids:
            return []
        descriptor = self._projected(columns).where_in(self._entity_type.primary_key, ids)
        return self._remember("find_many", (), descriptor, lambda: self._engine.run_collection(descriptor))

    def pluck(self, column: str, key: str | None = None) -> list[Any] | dict[Any, Any]:
        """Values of ``column``; a dict keyed by ``key`` when given."""
        columns = [column] if key is None or key == column else [column, key]
        descriptor = self._descriptor.select(columns)

        def compute() -> list[Any] | dict[Any, Any]:
            rows = self._engine.run_collection(descriptor)
            field = _row_field(column)
            if key is None:
                return [row.get(field) for row in rows]
            key_field = _row_field(key)
            return {row.get(key_field): row.get(field) for row in rows}

        return self._remember("pluck", (column, key), descriptor, compute)

    def value(self, column: str) -> Any:
        """``column`` of the first matching row, or None."""
        descriptor = self._descriptor.select([column]).take(1)

        def compute() -> Any:
            row = self._engine.run_single(descriptor)
            return None if row is None else row.get(_row_field(column))

        return self._remember("value", (column,), descriptor, compute)

    def sole(self, columns: Sequence[str] | str | None = None) -> Row:
        """
        The only matching row.

        Raises:
            RecordNotFoundError: No row matches
            MultipleRecordsFoundError: More than one row matches
        """
        descriptor = self._projected(columns).take(2)
        rows = self._remember("sole", (), descriptor, lambda: self._engine.run_collection(descriptor))
        if not rows:
            raise RecordNotFoundError(self._entity_type.entity_name())
        if len(rows) > 1:
            raise MultipleRecordsFoundError(self._entity_type.entity_name())
        return rows[0]

    # =========================================================================
    # Aggregates
    # =========================================================================

    def count(self, column: str = "*") -> int:
        """Matching rows; with a column, rows where that column is not null."""
        descriptor = self._descriptor
        return self._remember("count", (column,), descriptor, lambda: self._engine.run_count(descriptor, column))

    def sum(self, column: str) -> Any:
        """Sum of ``column``; 0 when no rows match."""
        return self._aggregate("sum", column) or 0

    def avg(self, column: str) -> Any:
        return self._aggregate("avg", column)

    def average(self, column: str) -> Any:
        """Alias of avg()."""
        return self.avg(column)

    def min(self, column: str) -> Any:
        return self._aggregate("min", column)

    def max(self, column: str) -> Any:
        return self._aggregate("max", column)

    # =========================================================================
    # Existence
    # =========================================================================

    def exists(self) -> bool:
        descriptor = self._descriptor
        return bool(self._remember("exists", (), descriptor, lambda: self._engine.run_exists(descriptor)))

    def doesnt_exist(self) -> bool:
        """Negation of exists(); shares its cache entry."""
        return not self.exists()

    # =========================================================================
    # Pagination
    # =========================================================================

    def paginate(
        self,
        per_page: int = DEFAULT_PER_PAGE,
        page: int = 1,
        columns: Sequence[str] | str | None = None,
    ) -> Page:
        """
        Length-aware page.

        Only the page items are cached. On a cache hit the total is counted
        live, so it may be fresher than the items it accompanies.
        """
        descriptor = self._projected(columns).for_page(page, per_page)

        if not self._enabled:
            items, total = self._engine.run_paginated(descriptor, per_page)
            return Page(items=items, total=total, per_page=per_page, current_page=page)

        policy = self._policy()
        key = self._key("paginate", (per_page, page), descriptor)
        items = self._lookup(key)
        if items is MISS:
            items, total = self._engine.run_paginated(descriptor, per_page)
            self._put(key, items, policy)
        else:
            total = self._engine.run_count(self._descriptor.without_paging())

        return Page(items=items, total=total, per_page=per_page, current_page=page)

    def simple_paginate(
        self,
        per_page: int = DEFAULT_PER_PAGE,
        page: int = 1,
        columns: Sequence[str] | str | None = None,
    ) -> SimplePage:
        """Page without a total count; the fetched rows are cached."""
        descriptor = self._projected(columns).for_page(page, per_page)
        rows = self._remember(
            "simple_paginate",
            (per_page, page),
            descriptor,
            lambda: self._engine.run_paginated_simple(descriptor, per_page),
        )
        return SimplePage.from_rows(rows, per_page, page)

    # =========================================================================
    # Internals
    # =========================================================================

    def _projected(self, columns: Sequence[str] | str | None) -> QueryDescriptor:
        if columns is None:
            return self._descriptor
        return self._descriptor.select(normalize_columns(columns))

    def _aggregate(self, function: str, column: str) -> Any:
        descriptor = self._descriptor
        return self._remember(
            function,
            (column,),
            descriptor,
            lambda: self._engine.run_aggregate(descriptor, function, column),
        )

    def _remember(
        self,
        operation: str,
        args: Sequence[Any],
        descriptor: QueryDescriptor,
        compute: Callable[[], Any],
    ) -> Any:
        """
        Serve ``operation`` from cache or compute and store it.

        Engine errors propagate and nothing is written for the key.
        """
        if not self._enabled:
            return compute()

        policy = self._policy()
        key = self._key(operation, args, descriptor)

        cached = self._lookup(key)
        if cached is not MISS:
            return cached

        value = compute()
        self._put(key, value, policy)
        return value

    def _policy(self) -> ExpirationPolicy:
        return self._ttl.resolve(self._entity_type, self._mode)

    def _key(self, operation: str, args: Sequence[Any], descriptor: QueryDescriptor) -> CacheKey:
        scope = self._keys.classify(descriptor)
        return self._keys.build_key(fingerprint(descriptor), operation, args, scope)

    def _lookup(self, key: CacheKey) -> Any:
        if self._mode is CallMode.WARMUP:
            return MISS

        try:
            value = self._store.get(key.value)
        except CacheUnavailableError as e:
            self._unavailable("get", key, e)
            value = MISS

        if value is MISS:
            self._stats.misses += 1
            self._logger.debug("cache_miss", key=key.value)
        else:
            self._stats.hits += 1
            self._logger.debug("cache_hit", key=key.value)
        return value

    def _put(self, key: CacheKey, value: Any, policy: ExpirationPolicy) -> None:
        store = self._store
        try:
            target = store.tags(key.tags) if store.supports_tags else store
            if policy.is_forever:
                written = target.put_forever(key.value, value)
            else:
                written = target.put(key.value, value, policy.ttl_seconds)
            if not written and self._mode is CallMode.WARMUP:
                # The entry being refreshed must not outlive the refresh
                store.forget(key.value)
        except CacheUnavailableError as e:
            self._unavailable("put", key, e)
            return

        if not written:
            self._logger.debug("cache_write_skipped", key=key.value)
            return

        if not store.supports_tags and self._entity_type.track_keys_without_tags and self._registry is not None:
            self._registry.register(key.value, key.tags, policy.ttl_seconds)

        self._stats.writes += 1
        self._logger.debug(
            "cache_write",
            key=key.value,
            ttl_seconds=policy.ttl_seconds,
            forever=policy.is_forever,
            tags=list(key.tags),
        )

    def _unavailable(self, operation: str, key: CacheKey, error: CacheUnavailableError) -> None:
        self._stats.errors += 1
        if not self._fail_open:
            raise error
        self._logger.warning(
            "cache_store_unavailable",
            operation=operation,
            key=key.value,
            error=str(error),
            fallback="execute_query",
        )


__all__ = ["CacheStats", "CachedQuery", "DEFAULT_PER_PAGE"]
