"""Cache manager — TTL, stale-while-revalidate, request dedup and eviction."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from routewatch.cache.keys import estimate_size, key_prefix
from routewatch.cache.memory import MemoryCache
from routewatch.cache.pressure import EntryCountProbe, PressureProbe
from routewatch.cache.stats import CacheEntry, CacheEvent, CacheEventType, CacheStats
from routewatch.config.defaults import DEFAULT_CACHE_MAX_ENTRIES
from routewatch.config.schema import CacheConfig, MemoryPressureConfig, default_cache_policies
from routewatch.errors.exceptions import CircuitOpenFailure, FetchFailure
from routewatch.events.subject import Subject

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
CacheCallback = Callable[[CacheEvent], None]


class CacheManager:
    """Single-process cache with fresh/stale/expired semantics.

    Policies are resolved per key prefix (``"vehicles:live"`` uses the
    ``vehicles`` policy). At most one fetch per key is in flight at a time;
    a background refresh counts as in flight.
    """

    def __init__(
        self,
        policies: dict[str, CacheConfig] | None = None,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        pressure_probe: PressureProbe | None = None,
        pressure_config: MemoryPressureConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._policies = default_cache_policies()
        if policies:
            self._policies.update(policies)
        self._max_entries = max_entries
        self._probe: PressureProbe = pressure_probe or EntryCountProbe()
        self._pressure = pressure_config or MemoryPressureConfig()
        self._clock = clock
        self._store = MemoryCache()
        self._stats = CacheStats()
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._subjects: dict[str, Subject[CacheEvent]] = {}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def policy_for(self, key: str) -> CacheConfig:
        return self._policies.get(key_prefix(key), self._policies["default"])

    def set_policy(self, prefix: str, config: CacheConfig) -> None:
        self._policies[prefix] = config

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        force_refresh: bool = False,
        config: CacheConfig | None = None,
    ) -> Any:
        """Return the value for ``key``, fetching it when needed.

        - fresh entry: returned without calling ``fetcher``
        - stale entry with stale-while-revalidate: returned at once, refreshed
          in the background
        - otherwise: the caller awaits the fetch; on failure an entry within
          ``max_age`` is served, else ``FetchFailure`` is raised
        """
        policy = config or self.policy_for(key)
        now = self._clock()
        entry = self._store.peek(key)

        if entry is not None and not force_refresh:
            if entry.is_fresh(now, policy.ttl):
                self._store.get(key, now)
                self._stats.hits += 1
                return entry.value
            if policy.stale_while_revalidate and entry.is_usable(now, policy.max_age):
                self._store.get(key, now)
                self._stats.stale_served += 1
                logger.debug("Serving stale '%s' (age %.1fs), refreshing", key, entry.age(now))
                self._refresh_in_background(key, fetcher, policy)
                return entry.value

        self._stats.misses += 1
        task = self._pending.get(key)
        if task is None:
            task = self._start_fetch(key, fetcher, policy, background=False)
        return await asyncio.shield(task)

    def peek(self, key: str, *, allow_stale: bool = False) -> Any | None:
        """Synchronous read: the value if fresh (or usable, with ``allow_stale``)."""
        entry = self._store.peek(key)
        if entry is None:
            return None
        policy = self.policy_for(key)
        now = self._clock()
        if entry.is_fresh(now, policy.ttl) or (allow_stale and entry.is_usable(now, policy.max_age)):
            self._store.get(key, now)
            self._stats.hits += 1
            return entry.value
        return None

    def get_stale(self, key: str) -> tuple[Any, float, bool] | None:
        """Return ``(value, age, is_stale)`` for any entry still within max_age."""
        entry = self._store.peek(key)
        if entry is None:
            return None
        policy = self.policy_for(key)
        now = self._clock()
        if not entry.is_usable(now, policy.max_age):
            return None
        return entry.value, entry.age(now), not entry.is_fresh(now, policy.ttl)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def drain(self) -> None:
        """Wait for every in-flight fetch, including background refreshes."""
        while self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, config: CacheConfig | None = None) -> None:
        """Overwrite an entry and notify subscribers."""
        policy = config or self.policy_for(key)
        now = self._clock()
        size = estimate_size(value)
        if policy.max_size_bytes is not None and size > policy.max_size_bytes:
            logger.warning(
                "Not caching '%s': %d bytes exceeds limit of %d", key, size, policy.max_size_bytes
            )
            return

        previous = self._store.peek(key)
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            updated_at=now,
            ttl=policy.ttl,
            max_age=policy.max_age,
            access_count=previous.access_count if previous else 0,
            last_accessed=now,
            size_bytes=size,
        )
        self._store.put(key, entry)
        self._enforce_limits(key, policy)
        self._emit(CacheEvent(type=CacheEventType.UPDATED, key=key, value=value, timestamp=now))

    def invalidate(self, key: str) -> bool:
        entry = self._store.remove(key)
        if entry is None:
            return False
        self._emit(CacheEvent(type=CacheEventType.CLEARED, key=key, timestamp=self._clock()))
        return True

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key prefix is ``prefix``."""
        keys = self._store.lru_keys(prefix)
        for key in keys:
            self.invalidate(key)
        if keys:
            logger.debug("Invalidated %d '%s' entries", len(keys), prefix)
        return len(keys)

    def clear(self) -> None:
        keys = self._store.lru_keys()
        self._store.clear()
        self._stats = CacheStats()
        now = self._clock()
        for key in keys:
            self._emit(CacheEvent(type=CacheEventType.CLEARED, key=key, timestamp=now))

    def cleanup(self) -> int:
        """Drop entries past their max_age. Returns the number removed."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._store.items()
            if not entry.is_usable(now, self.policy_for(key).max_age)
        ]
        for key in expired:
            self._store.remove(key)
            self._emit(CacheEvent(type=CacheEventType.EXPIRED, key=key, timestamp=now))
        if expired:
            logger.debug("Cleaned up %d expired entries", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Stats and subscriptions
    # ------------------------------------------------------------------

    def get_stats(self) -> CacheStats:
        now = self._clock()
        by_prefix: dict[str, int] = {}
        fresh = stale = expired = 0
        for key, entry in self._store.items():
            prefix = key_prefix(key)
            by_prefix[prefix] = by_prefix.get(prefix, 0) + 1
            policy = self.policy_for(key)
            if entry.is_fresh(now, policy.ttl):
                fresh += 1
            elif entry.is_usable(now, policy.max_age):
                stale += 1
            else:
                expired += 1
        return CacheStats(
            entries=len(self._store),
            total_size_bytes=self._store.size_bytes,
            by_prefix=dict(sorted(by_prefix.items())),
            fresh_entries=fresh,
            stale_entries=stale,
            expired_entries=expired,
            hits=self._stats.hits,
            misses=self._stats.misses,
            stale_served=self._stats.stale_served,
            evictions=self._stats.evictions,
            memory_pressure=self._probe.ratio(len(self._store), self._max_entries),
        )

    def subscribe(self, key_or_pattern: str, callback: CacheCallback) -> Callable[[], None]:
        """Subscribe to events for one key, or a prefix pattern ending in ``*``."""
        subject = self._subjects.get(key_or_pattern)
        if subject is None:
            subject = Subject(name=f"cache:{key_or_pattern}")
            self._subjects[key_or_pattern] = subject
        return subject.subscribe(callback)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_fetch(
        self, key: str, fetcher: Fetcher, policy: CacheConfig, *, background: bool
    ) -> asyncio.Future[Any]:
        task = asyncio.ensure_future(self._run_fetch(key, fetcher, policy))
        self._pending[key] = task
        task.add_done_callback(lambda t: self._fetch_done(key, t, background))
        return task

    def _refresh_in_background(self, key: str, fetcher: Fetcher, policy: CacheConfig) -> None:
        if key in self._pending:
            return
        self._start_fetch(key, fetcher, policy, background=True)

    async def _run_fetch(self, key: str, fetcher: Fetcher, policy: CacheConfig) -> Any:
        try:
            value = await fetcher()
        except CircuitOpenFailure:
            fallback = self._stale_fallback(key, policy)
            if fallback is not None:
                return fallback[0]
            raise
        except Exception as exc:
            fallback = self._stale_fallback(key, policy)
            if fallback is not None:
                logger.warning("Fetch for '%s' failed, serving stale value: %s", key, exc)
                return fallback[0]
            raise FetchFailure(f"Fetch failed for '{key}': {exc}", key=key, cause=exc) from exc
        self.set(key, value, config=policy)
        return value

    def _stale_fallback(self, key: str, policy: CacheConfig) -> tuple[Any] | None:
        entry = self._store.peek(key)
        if entry is None or not entry.is_usable(self._clock(), policy.max_age):
            return None
        self._stats.stale_served += 1
        return (entry.value,)

    def _fetch_done(self, key: str, task: asyncio.Future[Any], background: bool) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and background:
            logger.warning("Background refresh of '%s' failed: %s", key, exc)

    def _enforce_limits(self, written_key: str, policy: CacheConfig) -> None:
        prefix = key_prefix(written_key)
        if policy.max_entries is not None:
            excess = self._store.count_prefix(prefix) - policy.max_entries
            if excess > 0:
                self._evict(self._store.lru_keys(prefix), excess, written_key)

        count = len(self._store)
        ratio = self._probe.ratio(count, self._max_entries)
        if count <= self._max_entries and ratio < self._pressure.threshold:
            return

        target_ratio = (
            self._pressure.emergency_target_ratio
            if ratio >= self._pressure.emergency_threshold
            else self._pressure.target_ratio
        )
        target = int(self._max_entries * target_ratio)
        if count <= target:
            # pressure reported by a heap probe while under the entry target
            target = int(count * target_ratio)
        if count > target:
            logger.debug(
                "Memory pressure %.2f with %d entries, evicting down to %d", ratio, count, target
            )
            self._evict(self._store.lru_keys(), count - target, written_key)

    def _evict(self, candidates: list[str], count: int, protected_key: str) -> None:
        now = self._clock()
        evicted = 0
        for key in candidates:
            if evicted >= count:
                break
            if key == protected_key:
                continue
            self._store.remove(key)
            evicted += 1
            self._emit(CacheEvent(type=CacheEventType.EVICTED, key=key, timestamp=now))
        self._stats.evictions += evicted

    def _emit(self, event: CacheEvent) -> None:
        subject = self._subjects.get(event.key)
        if subject is not None:
            subject.notify(event)
        for pattern, pattern_subject in list(self._subjects.items()):
            if pattern.endswith("*") and event.key.startswith(pattern[:-1]):
                pattern_subject.notify(event)
