"""Unit tests for TTLCache.

Tests:
  - Value returned unchanged just before its TTL, miss just after
  - Stored None is a hit, not a miss
  - Namespaces carry their own TTLs
  - invalidate() drops by substring, sweep() evicts past the longest TTL
  - get_or_load() calls the loader once while the entry is fresh
"""

from __future__ import annotations

import pytest

from conftest import CACHE_TTLS, FakeClock
from connectsphere.core.cache import MISS, TTLCache

EPSILON = 0.001


class TestExpiry:
    """Entries live exactly for their namespace TTL."""

    def test_value_survives_until_ttl(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("settings", "t1", {"context": "bakery"})
        clock.advance(CACHE_TTLS["settings"] - EPSILON)
        assert cache.get("settings", "t1") == {"context": "bakery"}

    def test_value_expires_after_ttl(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("settings", "t1", {"context": "bakery"})
        clock.advance(CACHE_TTLS["settings"] + EPSILON)
        assert cache.get("settings", "t1") is MISS

    def test_namespaces_have_independent_ttls(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("history", "t1:wa_1:10", ["a"])
        cache.set("profile", "t1", {"name": "Shop"})
        clock.advance(CACHE_TTLS["history"] + EPSILON)
        assert cache.get("history", "t1:wa_1:10") is MISS
        assert cache.get("profile", "t1") == {"name": "Shop"}

    def test_none_is_a_cached_value(self, cache: TTLCache) -> None:
        cache.set("settings", "t1", None)
        assert cache.get("settings", "t1") is None
        assert cache.get("settings", "t2") is MISS

    def test_unknown_namespace_rejected(self, cache: TTLCache) -> None:
        with pytest.raises(KeyError):
            cache.set("nope", "k", 1)

    def test_empty_namespace_table_rejected(self) -> None:
        with pytest.raises(ValueError):
            TTLCache({})


class TestInvalidation:
    """Pattern invalidation and periodic sweeps."""

    def test_invalidate_by_tenant_prefix(self, cache: TTLCache) -> None:
        cache.set("history", "t1:wa_1:10", ["a"])
        cache.set("history", "t1:wa_2:10", ["b"])
        cache.set("history", "t2:wa_1:10", ["c"])
        removed = cache.invalidate("history:t1:")
        assert removed == 2
        assert cache.get("history", "t2:wa_1:10") == ["c"]

    def test_sweep_uses_longest_ttl(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("history", "k", 1)
        clock.advance(CACHE_TTLS["history"] + 1)
        # Expired for reads but kept until the longest TTL passes
        assert cache.sweep() == 0
        clock.advance(max(CACHE_TTLS.values()))
        assert cache.sweep() == 1
        assert len(cache) == 0


class TestGetOrLoad:
    """Read-through loading."""

    @pytest.mark.asyncio
    async def test_loader_called_once_while_fresh(self, cache: TTLCache, clock: FakeClock) -> None:
        calls = []

        async def loader() -> dict:
            calls.append(1)
            return {"v": len(calls)}

        first = await cache.get_or_load("consultant", "t1", loader)
        second = await cache.get_or_load("consultant", "t1", loader)
        assert first == second == {"v": 1}

        clock.advance(CACHE_TTLS["consultant"] + EPSILON)
        third = await cache.get_or_load("consultant", "t1", loader)
        assert third == {"v": 2}
