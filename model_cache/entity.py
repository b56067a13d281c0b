"""
Cacheable Entities

Capability base class an entity type inherits to opt into query caching.
It supplies the TTL accessor, the tag names used for invalidation and
the mutation events that should flush them.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, ClassVar


class MutationEvent(str, Enum):
    """Entity lifecycle events that may invalidate cached queries."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"


ALL_MUTATION_EVENTS: frozenset[MutationEvent] = frozenset(MutationEvent)


def _snake_plural(name: str) -> str:
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
    return snake if snake.endswith("s") else f"{snake}s"


class Cacheable:
    """
    Mixin for entity types whose queries may be cached.

    Override the class attributes to configure caching:

        class User(Cacheable):
            __entity__ = "users"
            cache_ttl_seconds = 300

    ``cache_ttl()`` may also be overridden for computed TTLs; returning
    ``None`` falls back to the configured global default.
    """

    __entity__: ClassVar[str | None] = None
    primary_key: ClassVar[str] = "id"

    cache_ttl_seconds: ClassVar[int | None] = None
    cache_enabled: ClassVar[bool] = True
    invalidate_on: ClassVar[frozenset[MutationEvent]] = ALL_MUTATION_EVENTS

    # Single-key invalidation for stores without tag support
    track_keys_without_tags: ClassVar[bool] = False

    @classmethod
    def entity_name(cls) -> str:
        return cls.__entity__ or _snake_plural(cls.__name__)

    @classmethod
    def cache_ttl(cls) -> int | None:
        """TTL in seconds for cached queries of this entity type."""
        return cls.cache_ttl_seconds

    @classmethod
    def cache_tag(cls) -> str:
        """Collection tag covering every non-identity query."""
        return f"{cls.entity_name()}:collection"

    @classmethod
    def identity_tag(cls, key: Any) -> str:
        """Tag covering cached lookups of one primary-key value."""
        return f"{cls.entity_name()}:id:{key}"

    @classmethod
    def entity_tag(cls) -> str:
        """Tag carried by every entry of this entity type."""
        return f"{cls.entity_name()}:all"

    @classmethod
    def invalidates_on(cls, event: MutationEvent) -> bool:
        return event in cls.invalidate_on

    def cache_key_value(self) -> Any:
        """Primary-key value of this instance."""
        return getattr(self, self.primary_key)


__all__ = ["ALL_MUTATION_EVENTS", "Cacheable", "MutationEvent"]
