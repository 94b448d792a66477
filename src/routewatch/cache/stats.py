"""Cache entry, event and statistics models."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """A cached value with its freshness bookkeeping.

    ``ttl`` and ``max_age`` record the policy in force when the entry was
    written; reads re-resolve the policy by key prefix.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    value: Any = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    ttl: float = 60.0
    max_age: float = 600.0
    access_count: int = 0
    last_accessed: float = Field(default_factory=time.time)
    size_bytes: int = 0

    def age(self, now: float) -> float:
        return max(0.0, now - self.updated_at)

    def is_fresh(self, now: float, ttl: float | None = None) -> bool:
        return self.age(now) <= (self.ttl if ttl is None else ttl)

    def is_usable(self, now: float, max_age: float | None = None) -> bool:
        """True while the entry may still be served, at least as a stale fallback."""
        return self.age(now) <= (self.max_age if max_age is None else max_age)

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now


class CacheEventType(StrEnum):
    UPDATED = "updated"
    EVICTED = "evicted"
    CLEARED = "cleared"
    EXPIRED = "expired"


class CacheEvent(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: CacheEventType
    key: str
    value: Any = None
    timestamp: float = Field(default_factory=time.time)


class CacheStats(BaseModel):
    """Aggregate cache statistics."""

    entries: int = 0
    total_size_bytes: int = 0
    by_prefix: dict[str, int] = Field(default_factory=dict)
    fresh_entries: int = 0
    stale_entries: int = 0
    expired_entries: int = 0
    hits: int = 0
    misses: int = 0
    stale_served: int = 0
    evictions: int = 0
    memory_pressure: float = 0.0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def size_mb(self) -> float:
        return self.total_size_bytes / (1024 * 1024)
