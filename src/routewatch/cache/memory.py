"""In-memory LRU store backing the cache manager."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator

from routewatch.cache.keys import key_prefix
from routewatch.cache.stats import CacheEntry


class MemoryCache:
    """Insertion-ordered store; the front is the least recently accessed entry."""

    def __init__(self) -> None:
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._current_size_bytes = 0

    def get(self, key: str, now: float) -> CacheEntry | None:
        """Return an entry and mark it most recently used."""
        entry = self._store.get(key)
        if entry is None:
            return None
        entry.touch(now)
        self._store.move_to_end(key)
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return an entry without affecting LRU order."""
        return self._store.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        if key in self._store:
            self._remove(key)
        self._store[key] = entry
        self._current_size_bytes += entry.size_bytes

    def remove(self, key: str) -> CacheEntry | None:
        return self._remove(key)

    def clear(self) -> None:
        self._store.clear()
        self._current_size_bytes = 0

    def lru_keys(self, prefix: str | None = None) -> list[str]:
        """Keys ordered least recently used first, optionally for one prefix."""
        if prefix is None:
            return list(self._store)
        return [k for k in self._store if key_prefix(k) == prefix]

    def count_prefix(self, prefix: str) -> int:
        return sum(1 for k in self._store if key_prefix(k) == prefix)

    def items(self) -> Iterator[tuple[str, CacheEntry]]:
        return iter(list(self._store.items()))

    @property
    def size_bytes(self) -> int:
        return self._current_size_bytes

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def _remove(self, key: str) -> CacheEntry | None:
        entry = self._store.pop(key, None)
        if entry is not None:
            self._current_size_bytes -= entry.size_bytes
        return entry
