"""Tests for CacheManager freshness, stale-while-revalidate and dedup."""

import asyncio

import pytest

from routewatch.cache.manager import CacheManager
from routewatch.cache.stats import CacheEventType
from routewatch.config.schema import CacheConfig
from routewatch.errors.exceptions import FetchFailure


def _failing(exc: Exception | None = None):
    async def fetch():
        raise exc or ValueError("upstream down")

    return fetch


def _returning(value, calls: list | None = None):
    async def fetch():
        if calls is not None:
            calls.append(1)
        return value

    return fetch


class TestFreshness:
    async def test_set_then_get_skips_fetcher(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", ["v1"])
        assert await cache.get("vehicles:live", _failing()) == ["v1"]

    async def test_miss_fetches_and_stores(self, clock):
        cache = CacheManager(clock=clock)
        calls = []
        assert await cache.get("stops:all", _returning(["s1"], calls)) == ["s1"]
        assert await cache.get("stops:all", _returning(["s2"], calls)) == ["s1"]
        assert len(calls) == 1

    async def test_force_refresh_fetches_even_when_fresh(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("stops:all", ["old"])
        assert await cache.get("stops:all", _returning(["new"]), force_refresh=True) == ["new"]

    async def test_hits_and_misses_counted(self, clock):
        cache = CacheManager(clock=clock)
        await cache.get("stops:all", _returning(1))
        await cache.get("stops:all", _returning(2))
        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.hits == 1
        assert stats.hit_rate == 0.5


class TestStaleWhileRevalidate:
    async def test_stale_value_served_while_refreshing_once(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", ["old"])
        clock.advance(31)  # past the 30s vehicles ttl

        gate = asyncio.Event()
        calls = []

        async def slow_fetch():
            calls.append(1)
            await gate.wait()
            return ["new"]

        assert await cache.get("vehicles:live", slow_fetch) == ["old"]
        assert await cache.get("vehicles:live", slow_fetch) == ["old"]
        assert cache.is_pending("vehicles:live")

        gate.set()
        await cache.drain()

        assert len(calls) == 1
        assert not cache.is_pending("vehicles:live")
        assert await cache.get("vehicles:live", _failing()) == ["new"]

    async def test_background_failure_is_swallowed(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", ["old"])
        clock.advance(31)

        assert await cache.get("vehicles:live", _failing()) == ["old"]
        await cache.drain()
        value, age, is_stale = cache.get_stale("vehicles:live")
        assert value == ["old"]
        assert age == 31
        assert is_stale is True

    async def test_stale_without_swr_awaits_fetch(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("route_activity:x", {"r1": 1})
        clock.advance(10)  # route_activity: ttl 5, no SWR
        assert await cache.get("route_activity:x", _returning({"r1": 2})) == {"r1": 2}


class TestFailOpen:
    async def test_fetch_error_serves_entry_within_max_age(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("route_activity:x", {"r1": 1})
        clock.advance(10)
        assert await cache.get("route_activity:x", _failing()) == {"r1": 1}
        assert cache.get_stats().stale_served == 1

    async def test_expired_entry_never_returned(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", ["old"])
        clock.advance(301)  # past the 300s vehicles max_age

        cause = ValueError("timeout")
        with pytest.raises(FetchFailure) as excinfo:
            await cache.get("vehicles:live", _failing(cause))
        assert excinfo.value.cause is cause
        assert excinfo.value.__cause__ is cause
        assert excinfo.value.key == "vehicles:live"

    async def test_missing_entry_propagates(self, clock):
        cache = CacheManager(clock=clock)
        with pytest.raises(FetchFailure):
            await cache.get("trips:t1", _failing())
        assert not cache.is_pending("trips:t1")


class TestDedup:
    async def test_concurrent_foreground_callers_share_one_fetch(self, clock):
        cache = CacheManager(clock=clock)
        calls = []

        async def fetch():
            calls.append(1)
            await asyncio.sleep(0)
            return ["s1"]

        results = await asyncio.gather(
            cache.get("stops:all", fetch),
            cache.get("stops:all", fetch),
            cache.get("stops:all", fetch),
        )
        assert results == [["s1"], ["s1"], ["s1"]]
        assert len(calls) == 1

    async def test_shared_failure_reaches_every_caller(self, clock):
        cache = CacheManager(clock=clock)

        async def fetch():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            cache.get("stops:all", fetch),
            cache.get("stops:all", fetch),
            return_exceptions=True,
        )
        assert all(isinstance(r, FetchFailure) for r in results)


class TestInvalidation:
    def test_invalidate(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("stops:a", 1)
        assert cache.invalidate("stops:a") is True
        assert cache.invalidate("stops:a") is False
        assert cache.peek("stops:a") is None

    def test_invalidate_prefix(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("route_activity:a", 1)
        cache.set("route_activity:b", 2)
        cache.set("stops:a", 3)
        assert cache.invalidate_prefix("route_activity") == 2
        assert len(cache) == 1

    def test_clear_resets_stats(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("stops:a", 1)
        cache.peek("stops:a")
        cache.clear()
        stats = cache.get_stats()
        assert stats.entries == 0
        assert stats.hits == 0

    def test_cleanup_removes_expired(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("route_activity:a", 1)
        cache.set("stops:a", 2)
        clock.advance(31)  # route_activity max_age is 30s
        assert cache.cleanup() == 1
        assert "stops:a" in cache
        assert "route_activity:a" not in cache


class TestPeek:
    def test_peek_fresh_only_by_default(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", [1])
        assert cache.peek("vehicles:live") == [1]
        clock.advance(31)
        assert cache.peek("vehicles:live") is None
        assert cache.peek("vehicles:live", allow_stale=True) == [1]

    def test_get_stale_none_past_max_age(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", [1])
        clock.advance(301)
        assert cache.get_stale("vehicles:live") is None


class TestStatsAndPolicies:
    def test_stats_by_prefix_and_freshness(self, clock):
        cache = CacheManager(clock=clock)
        cache.set("vehicles:live", [1, 2])
        cache.set("stops:all", ["s"])
        cache.set("route_activity:x", {})
        clock.advance(40)
        stats = cache.get_stats()
        assert stats.entries == 3
        assert stats.by_prefix == {"route_activity": 1, "stops": 1, "vehicles": 1}
        assert stats.fresh_entries == 1  # stops
        assert stats.stale_entries == 1  # vehicles
        assert stats.expired_entries == 1  # route_activity
        assert stats.total_size_bytes > 0

    def test_unknown_prefix_uses_default_policy(self, clock):
        cache = CacheManager(clock=clock)
        assert cache.policy_for("weather:now").ttl == 60

    def test_custom_policy(self, clock):
        cache = CacheManager(
            policies={"weather": CacheConfig(ttl=1, max_age=2)}, clock=clock
        )
        cache.set("weather:now", "sunny")
        clock.advance(1.5)
        assert cache.peek("weather:now") is None

    def test_oversized_value_not_cached(self, clock):
        cache = CacheManager(
            policies={"blob": CacheConfig(ttl=10, max_age=20, max_size_bytes=10)}, clock=clock
        )
        cache.set("blob:x", "x" * 100)
        assert "blob:x" not in cache


class TestSubscriptions:
    def test_key_subscriber_receives_update(self, clock):
        cache = CacheManager(clock=clock)
        seen = []
        cache.subscribe("vehicles:live", seen.append)
        cache.set("vehicles:live", ["v1"])
        assert len(seen) == 1
        assert seen[0].type == CacheEventType.UPDATED
        assert seen[0].key == "vehicles:live"
        assert seen[0].value == ["v1"]

    def test_prefix_pattern_subscriber(self, clock):
        cache = CacheManager(clock=clock)
        seen = []
        cache.subscribe("vehicles*", lambda e: seen.append(e.key))
        cache.set("vehicles:a", 1)
        cache.set("stops:a", 1)
        cache.set("vehicles:b", 1)
        assert seen == ["vehicles:a", "vehicles:b"]

    def test_unsubscribe(self, clock):
        cache = CacheManager(clock=clock)
        seen = []
        unsubscribe = cache.subscribe("stops:a", seen.append)
        unsubscribe()
        unsubscribe()
        cache.set("stops:a", 1)
        assert seen == []

    async def test_fetch_emits_update(self, clock):
        cache = CacheManager(clock=clock)
        seen = []
        cache.subscribe("stops:a", seen.append)
        await cache.get("stops:a", _returning(5))
        assert [e.value for e in seen] == [5]
