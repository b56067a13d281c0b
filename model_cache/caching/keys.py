"""
Cache Key Builder
=================

Combines a query fingerprint with an operation discriminator and the
operation's arguments into one cache key, and decides which tags the
entry is stored under.

Queries constrained only by the primary key (equality or membership) are
identity-scoped and tagged per id; every other query is collection-scoped
and carries the entity's collection tag.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from model_cache.entity import Cacheable
from model_cache.query.descriptor import Operator, QueryDescriptor
from model_cache.query.fingerprint import render_literal

_SAFE_COMPONENT = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

IDENTITY_OPERATORS = (Operator.EQ, Operator.IN)


@dataclass(frozen=True)
class CollectionScope:
    """Query not constrained solely by primary key."""

    @property
    def is_identity(self) -> bool:
        return False


@dataclass(frozen=True)
class IdentityScope:
    """Query constrained only by primary-key equality or membership."""

    ids: tuple[Any, ...]

    @property
    def is_identity(self) -> bool:
        return True


Scope = CollectionScope | IdentityScope

COLLECTION = CollectionScope()


@dataclass(frozen=True)
class CacheKey:
    """A derived cache key and the tags its entry is stored under."""

    value: str
    tags: tuple[str, ...]
    scope: Scope

    def __str__(self) -> str:
        return self.value


def classify(descriptor: QueryDescriptor, primary_key: str = "id") -> Scope:
    """
    Classify a descriptor as identity- or collection-scoped.

    Identity scope requires at least one predicate and every predicate to
    be ``primary_key = v`` or ``primary_key in (...)``.
    """
    if not descriptor.predicates:
        return COLLECTION

    ids: list[Any] = []
    for predicate in descriptor.predicates:
        if predicate.column != primary_key or predicate.operator not in IDENTITY_OPERATORS:
            return COLLECTION
        values = predicate.value if predicate.operator is Operator.IN else (predicate.value,)
        for value in values:
            if value is None:
                return COLLECTION
            if value not in ids:
                ids.append(value)

    return IdentityScope(tuple(ids))


def sanitize_key_component(component: Any) -> str:
    """
    Make a value safe to embed in a cache key.

    Components outside ``[a-zA-Z0-9_-]{1,64}`` are replaced by a hash so a
    crafted id cannot address another entry's key.
    """
    component_str = str(component)
    if _SAFE_COMPONENT.match(component_str):
        return component_str
    return "h" + hashlib.sha256(component_str.encode()).hexdigest()[:16]


class CacheKeyBuilder:
    """
    Builds cache keys and tag sets for one entity type.

    Keys:
        collection: ``<prefix><entity>:<hash>``
        identity:   ``<prefix><entity>:id:<ids>:<hash>``

    where ``<hash>`` covers fingerprint, operation and arguments.
    """

    def __init__(self, entity_type: type[Cacheable], prefix: str = "model_cache:"):
        self._entity_type = entity_type
        self._prefix = prefix

    @property
    def entity_type(self) -> type[Cacheable]:
        return self._entity_type

    def classify(self, descriptor: QueryDescriptor) -> Scope:
        return classify(descriptor, self._entity_type.primary_key)

    def build_key(
        self,
        fingerprint: str,
        operation: str,
        args: Sequence[Any] = (),
        scope: Scope = COLLECTION,
    ) -> CacheKey:
        """
        Derive the key for ``operation(*args)`` over a fingerprinted query.

        Args:
            fingerprint: Canonical query text
            operation: Operation discriminator (``get``, ``count``, ...)
            args: Arguments that shape the result (columns, aggregate column)
            scope: Classification of the query

        Returns:
            CacheKey with the tags for ``scope``
        """
        digest = self._hash(fingerprint, operation, args)
        entity = self._entity_type.entity_name()

        if isinstance(scope, IdentityScope):
            ids = ",".join(sanitize_key_component(i) for i in scope.ids)
            value = f"{self._prefix}{entity}:id:{sanitize_key_component(ids)}:{digest}"
        else:
            value = f"{self._prefix}{entity}:{digest}"

        return CacheKey(value=value, tags=self.tags_for(scope), scope=scope)

    def tags_for(self, scope: Scope) -> tuple[str, ...]:
        """Tags an entry of the given scope is stored under."""
        entity_type = self._entity_type
        if isinstance(scope, IdentityScope):
            scoped = tuple(entity_type.identity_tag(i) for i in scope.ids)
        else:
            scoped = (entity_type.cache_tag(),)
        return scoped + (entity_type.entity_tag(),)

    @staticmethod
    def _hash(fingerprint: str, operation: str, args: Sequence[Any]) -> str:
        content = f"{fingerprint}|{operation}|{render_literal(tuple(args))}"
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]


__all__ = [
    "COLLECTION",
    "CacheKey",
    "CacheKeyBuilder",
    "CollectionScope",
    "IdentityScope",
    "Scope",
    "classify",
    "sanitize_key_component",
]
