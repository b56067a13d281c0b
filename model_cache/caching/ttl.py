"""
TTL Resolution
==============

Determines how long a cached query result lives. Warmup writes never
expire; otherwise the entity's own TTL wins over the global default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from model_cache.config import DEFAULT_TTL_SECONDS
from model_cache.entity import Cacheable
from model_cache.exceptions import CacheConfigurationError

logger = structlog.get_logger(__name__)


class CallMode(Enum):
    NORMAL = "normal"
    WARMUP = "warmup"


@dataclass(frozen=True)
class ExpirationPolicy:
    """Storage policy for one write; ``ttl_seconds is None`` means forever."""

    ttl_seconds: int | None

    @property
    def is_forever(self) -> bool:
        return self.ttl_seconds is None


FOREVER = ExpirationPolicy(ttl_seconds=None)


class TTLResolver:
    """
    Resolves the expiration policy for an entity type.

    The entity TTL is looked up once and memoized for the resolver's
    lifetime; a new resolver (or another entity type) resolves again.
    """

    def __init__(self, default_ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self._default_ttl = default_ttl_seconds
        self._resolved: dict[type[Cacheable], ExpirationPolicy] = {}

    def resolve(self, entity_type: type[Cacheable], mode: CallMode = CallMode.NORMAL) -> ExpirationPolicy:
        """
        Resolve the expiration policy.

        Args:
            entity_type: The cached entity type
            mode: NORMAL or WARMUP

        Returns:
            FOREVER for warmup, otherwise a finite policy

        Raises:
            CacheConfigurationError: If the configured TTL is not a positive integer
        """
        if mode is CallMode.WARMUP:
            return FOREVER

        policy = self._resolved.get(entity_type)
        if policy is None:
            policy = ExpirationPolicy(self._lookup_ttl(entity_type))
            self._resolved[entity_type] = policy
        return policy

    def _lookup_ttl(self, entity_type: type[Cacheable]) -> int:
        ttl = entity_type.cache_ttl()
        source = "entity"
        if ttl is None:
            ttl = self._default_ttl
            source = "default"

        if isinstance(ttl, bool) or not isinstance(ttl, int):
            raise CacheConfigurationError(
                f"Cache TTL for {entity_type.__name__} must be an integer number of seconds, got {ttl!r}"
            )
        if ttl <= 0:
            raise CacheConfigurationError(
                f"Cache TTL for {entity_type.__name__} must be positive, got {ttl}"
            )

        logger.debug("cache_ttl_resolved", entity=entity_type.entity_name(), ttl_seconds=ttl, source=source)
        return ttl


__all__ = ["CallMode", "ExpirationPolicy", "FOREVER", "TTLResolver"]
