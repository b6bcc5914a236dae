"""Tests for BoundedCache and CacheService."""

from __future__ import annotations

import pytest

from airlift.core.cache import BoundedCache, CacheService
from airlift.models.config import CacheLimits
from airlift.models.existence import ExistenceResult


class TestBoundedCache:
    def test_get_miss_returns_default(self):
        cache: BoundedCache[int] = BoundedCache(4, 2)
        assert cache.get("missing") is None
        assert cache.get("missing", 7) == 7
        assert cache.stats()["misses"] == 2

    def test_set_then_get(self):
        cache: BoundedCache[int] = BoundedCache(4, 2)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert cache.stats()["hits"] == 1

    def test_size_never_exceeds_max(self):
        cache: BoundedCache[int] = BoundedCache(10, 3)
        for i in range(100):
            cache.set(f"k{i}", i)
            assert len(cache) <= 10

    def test_block_eviction_drops_oldest(self):
        cache: BoundedCache[int] = BoundedCache(4, 2)
        for key in "abcd":
            cache.set(key, ord(key))
        cache.set("e", 0)
        assert len(cache) == 3
        assert "a" not in cache and "b" not in cache
        assert all(k in cache for k in "cde")
        assert cache.stats()["evictions"] == 2

    def test_get_refreshes_recency(self):
        cache: BoundedCache[int] = BoundedCache(3, 1)
        for key in "abc":
            cache.set(key, 0)
        cache.get("a")
        cache.set("d", 0)
        assert "a" in cache
        assert "b" not in cache

    def test_overwrite_does_not_evict(self):
        cache: BoundedCache[int] = BoundedCache(2, 1)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert len(cache) == 2
        assert cache.get("a") == 3

    def test_clear(self):
        cache: BoundedCache[int] = BoundedCache(2, 1)
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize("max_size,eviction", [(0, 1), (5, 0), (5, 6)])
    def test_rejects_invalid_limits(self, max_size, eviction):
        with pytest.raises(ValueError):
            BoundedCache(max_size, eviction)


class TestCacheService:
    def test_existence_key_is_registry_scoped(self):
        assert CacheService.existence_key("http://r", "a@1.0.0") == "http://r::a@1.0.0"

    def test_caches_are_per_instance(self):
        first = CacheService()
        second = CacheService()
        first.existence.set("k", ExistenceResult.exists())
        assert "k" not in second.existence

    def test_clear_and_stats(self):
        service = CacheService(CacheLimits(max_size=5, eviction_count=1))
        service.existence.set("k", ExistenceResult.exists())
        service.auth.set("http://r", None)
        stats = service.stats()
        assert stats["existence"]["size"] == 1
        assert stats["auth"]["max_size"] == 5
        service.clear()
        assert service.stats()["existence"]["size"] == 0
        assert service.stats()["auth"]["size"] == 0
