"""Debug event log — bounded, append-only trail of pipeline decisions."""

from __future__ import annotations

import time
from collections import deque
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from routewatch.config.defaults import DEFAULT_DEBUG_LOG_SIZE


class DebugLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DebugEvent(BaseModel):
    """A single classification, filtering or validation decision."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time)
    level: DebugLevel = DebugLevel.DEBUG
    operation: str
    vehicle_id: str = ""
    route_id: str = ""
    decision: str = ""
    reason: str = ""


class EventLog:
    """Append-only, queryable event log. Oldest events drop off past max_size."""

    def __init__(self, max_size: int = DEFAULT_DEBUG_LOG_SIZE) -> None:
        self._events: deque[DebugEvent] = deque(maxlen=max_size)

    def append(self, event: DebugEvent) -> None:
        self._events.append(event)

    def record(self, operation: str, **fields: object) -> DebugEvent:
        event = DebugEvent(operation=operation, **fields)  # type: ignore[arg-type]
        self._events.append(event)
        return event

    @property
    def events(self) -> list[DebugEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        self._events.clear()

    def query_by_route(self, route_id: str) -> list[DebugEvent]:
        return [e for e in self._events if e.route_id == route_id]

    def query_by_vehicle(self, vehicle_id: str) -> list[DebugEvent]:
        return [e for e in self._events if e.vehicle_id == vehicle_id]

    def query_by_operation(self, operation: str) -> list[DebugEvent]:
        return [e for e in self._events if e.operation == operation]

    def query_by_level(self, level: DebugLevel) -> list[DebugEvent]:
        return [e for e in self._events if e.level == level]
