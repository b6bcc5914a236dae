"""Bounded LRU caches with block eviction.

The engine owns one ``CacheService`` holding two caches:

- **existence**: ``registryUrl::name@version`` -> ``ExistenceResult``.
  Only certain results are stored; entries are never invalidated, only
  evicted by capacity.
- **auth**: ``registryUrl`` -> bearer token (or ``None`` when the registry
  has no configured token).

When a new key is inserted into a full cache, the ``eviction_count``
least-recently-touched entries are dropped in one step.  All operations
complete synchronously, so concurrent coroutines never observe a cache
mid-update.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Generic, TypeVar

from airlift.models.config import CacheLimits
from airlift.models.existence import ExistenceResult

logger = logging.getLogger(__name__)

V = TypeVar("V")

_MISSING: Any = object()


class BoundedCache(Generic[V]):
    """Key/value store capped at ``max_size`` entries.

    Parameters
    ----------
    max_size:
        Hard upper bound on the number of entries.
    eviction_count:
        Entries removed per eviction, oldest first.  Must be between 1 and
        ``max_size``.
    name:
        Label used in logs and stats.
    """

    def __init__(self, max_size: int, eviction_count: int, *, name: str = "cache") -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if not 1 <= eviction_count <= max_size:
            raise ValueError("eviction_count must be between 1 and max_size")
        self.name = name
        self.max_size = max_size
        self.eviction_count = eviction_count
        self._entries: OrderedDict[str, V] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str, default: Any = None) -> V | Any:
        """Return the cached value, marking it most recently used."""
        value = self._entries.get(key, _MISSING)
        if value is _MISSING:
            self._misses += 1
            return default
        self._entries.move_to_end(key)
        self._hits += 1
        return value

    def set(self, key: str, value: V) -> None:
        """Insert or refresh an entry, evicting a block when full."""
        if key in self._entries:
            self._entries.move_to_end(key)
            self._entries[key] = value
            return
        if len(self._entries) >= self.max_size:
            self._evict()
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        count = min(self.eviction_count, len(self._entries))
        for _ in range(count):
            self._entries.popitem(last=False)
        self._evictions += count
        logger.debug("%s: evicted %d oldest entries", self.name, count)

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }


class CacheService:
    """The existence and auth-token caches for one engine instance."""

    def __init__(self, limits: CacheLimits | None = None) -> None:
        limits = limits or CacheLimits()
        self.existence: BoundedCache[ExistenceResult] = BoundedCache(
            limits.max_size, limits.eviction_count, name="existence"
        )
        self.auth: BoundedCache[str | None] = BoundedCache(
            limits.max_size, limits.eviction_count, name="auth"
        )

    @staticmethod
    def existence_key(registry_url: str, artifact_key: str) -> str:
        return f"{registry_url}::{artifact_key}"

    def clear(self) -> None:
        """Drop every cached entry, forcing fresh checks."""
        self.existence.clear()
        self.auth.clear()
        logger.debug("Cleared existence and auth caches")

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            "existence": self.existence.stats(),
            "auth": self.auth.stats(),
        }
