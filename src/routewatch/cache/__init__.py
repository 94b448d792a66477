"""Cache subsystem — TTL and stale-while-revalidate over an LRU memory store."""

from routewatch.cache.keys import generate_cache_key, hash_payload, key_prefix
from routewatch.cache.manager import CacheManager
from routewatch.cache.pressure import EntryCountProbe, PressureProbe, StaticProbe, TracemallocProbe
from routewatch.cache.stats import CacheEntry, CacheEvent, CacheEventType, CacheStats

__all__ = [
    "CacheManager",
    "CacheEntry",
    "CacheEvent",
    "CacheEventType",
    "CacheStats",
    "PressureProbe",
    "EntryCountProbe",
    "TracemallocProbe",
    "StaticProbe",
    "generate_cache_key",
    "hash_payload",
    "key_prefix",
]
