"""Memory-pressure probes used by the cache eviction policy."""

from __future__ import annotations

import logging
import tracemalloc
from typing import Protocol

logger = logging.getLogger(__name__)


class PressureProbe(Protocol):
    def ratio(self, entries: int, capacity: int) -> float:
        """Current pressure as a fraction, where 1.0 means full."""
        ...


class EntryCountProbe:
    """Portable default: pressure is the entry count over the cache ceiling."""

    def ratio(self, entries: int, capacity: int) -> float:
        if capacity <= 0:
            return 1.0
        return entries / capacity


class TracemallocProbe:
    """Heap-based pressure from ``tracemalloc``.

    Only meaningful while tracing is active; otherwise reports 0.0 so the
    entry-count ceiling alone governs eviction.
    """

    def __init__(self, budget_bytes: int) -> None:
        if budget_bytes <= 0:
            raise ValueError("budget_bytes must be positive")
        self._budget = budget_bytes

    def ratio(self, entries: int, capacity: int) -> float:
        if not tracemalloc.is_tracing():
            return 0.0
        current, _peak = tracemalloc.get_traced_memory()
        return current / self._budget


class StaticProbe:
    """Fixed ratio, for tests and for callers that sample pressure elsewhere."""

    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def ratio(self, entries: int, capacity: int) -> float:
        return self.value
