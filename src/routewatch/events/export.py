"""Debug data export — JSON and CSV renderings of the event log."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from routewatch.events.log import DebugEvent

CSV_HEADER = "timestamp,level,operation,vehicle_id,route_id,decision,reason"
SUPPORTED_FORMATS = ("json", "csv")


def export_debug_data(
    format: str,
    events: Iterable[DebugEvent],
    *,
    cache_stats: BaseModel | Mapping[str, Any] | None = None,
    circuit_breakers: Mapping[str, Any] | None = None,
    degradation_history: Iterable[Any] | None = None,
) -> str:
    """Serialize debug events plus operational state.

    ``json`` includes everything; ``csv`` holds one line per debug event.
    Raises ValueError for any other format.
    """
    fmt = format.lower()
    if fmt == "json":
        payload = {
            "exported_at": _iso(datetime.now(UTC).timestamp()),
            "debug_events": [_jsonable(e) for e in events],
            "cache_stats": _jsonable(cache_stats) if cache_stats is not None else None,
            "circuit_breakers": {
                name: _jsonable(info) for name, info in (circuit_breakers or {}).items()
            },
            "degradation_history": [_jsonable(e) for e in (degradation_history or [])],
        }
        return json.dumps(payload, indent=2, sort_keys=False, default=str)
    if fmt == "csv":
        lines = [CSV_HEADER]
        for event in events:
            fields = [
                _iso(event.timestamp),
                event.level.value,
                event.operation,
                event.vehicle_id,
                event.route_id,
                event.decision,
                event.reason,
            ]
            lines.append(",".join(_csv_field(f) for f in fields))
        return "\n".join(lines)
    raise ValueError(f"Unsupported export format '{format}' (expected one of {SUPPORTED_FORMATS})")


def _csv_field(value: str) -> str:
    return value.replace(",", ";").replace("\r", " ").replace("\n", " ")


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat()


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value
