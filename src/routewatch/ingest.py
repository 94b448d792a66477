"""Ingress parsing — untrusted upstream payloads into the strict internal models.

This is the only place ValidationFailure is raised. Everything downstream
works on validated Vehicle / Station / StopTime objects.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from routewatch.analysis.geo import is_valid_coordinates
from routewatch.errors.exceptions import ValidationFailure
from routewatch.types import Coordinates, Station, StopTime, Vehicle

logger = logging.getLogger(__name__)

# Epoch values above this are taken to be milliseconds
_EPOCH_MS_CUTOFF = 1e11


def _first(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _require_mapping(raw: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValidationFailure(
            f"{kind} must be a mapping, got {type(raw).__name__}",
            field=kind,
            value=raw,
            reason="not a mapping",
        )
    return raw


def _require_str(raw: Mapping[str, Any], field: str, *names: str) -> str:
    value = _first(raw, *names)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationFailure(f"Missing '{field}'", field=field, value=value, reason="missing")
    if isinstance(value, bool) or not isinstance(value, str | int):
        raise ValidationFailure(
            f"'{field}' must be a string", field=field, value=value, reason="wrong type"
        )
    return str(value)


def _optional_float(raw: Mapping[str, Any], field: str, *names: str) -> float | None:
    value = _first(raw, *names)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float) or not math.isfinite(value):
        raise ValidationFailure(
            f"'{field}' must be a finite number", field=field, value=value, reason="not finite"
        )
    return float(value)


def parse_coordinates(raw: Any, field: str = "position") -> Coordinates:
    """Accept ``{latitude, longitude}`` or ``{lat, lon|lng}``."""
    mapping = _require_mapping(raw, field)
    lat = _first(mapping, "latitude", "lat")
    lon = _first(mapping, "longitude", "lon", "lng")
    accuracy = _first(mapping, "accuracy")
    try:
        coords = Coordinates(latitude=lat, longitude=lon, accuracy=accuracy)
    except ValidationError as exc:
        raise ValidationFailure(
            f"Invalid {field}: {lat!r}, {lon!r}", field=field, value=raw, reason="not numeric"
        ) from exc
    if isinstance(lat, bool) or isinstance(lon, bool) or not is_valid_coordinates(coords):
        raise ValidationFailure(
            f"Invalid {field}: {lat!r}, {lon!r}", field=field, value=raw, reason="out of range"
        )
    return coords


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """ISO-8601 string, epoch seconds (or milliseconds) or datetime. Naive means UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise ValidationFailure(
                f"Invalid {field}", field=field, value=value, reason="not finite"
            )
        seconds = value / 1000 if value > _EPOCH_MS_CUTOFF else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValidationFailure(
                f"Invalid {field}", field=field, value=value, reason="out of range"
            ) from exc
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationFailure(
                f"Invalid {field}: {value!r}", field=field, value=value, reason="not ISO-8601"
            ) from exc
    else:
        raise ValidationFailure(f"Missing '{field}'", field=field, value=value, reason="missing")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_vehicle(raw: Any) -> Vehicle:
    mapping = _require_mapping(raw, "vehicle")
    position_raw = _first(mapping, "position")
    if position_raw is None:
        position_raw = mapping
    return Vehicle(
        id=_require_str(mapping, "id", "id"),
        route_id=_require_str(mapping, "route_id", "routeId", "route_id"),
        position=parse_coordinates(position_raw),
        timestamp=parse_timestamp(_first(mapping, "timestamp")),
        trip_id=(
            str(_first(mapping, "tripId", "trip_id"))
            if _first(mapping, "tripId", "trip_id") is not None
            else None
        ),
        speed=_optional_float(mapping, "speed", "speed"),
        bearing=_optional_float(mapping, "bearing", "bearing"),
    )


def parse_vehicles(raw_list: Any) -> tuple[list[Vehicle], list[ValidationFailure]]:
    """Parse a snapshot, dropping (and logging) rows that fail validation."""
    if not isinstance(raw_list, list):
        failure = ValidationFailure(
            "Vehicle snapshot must be a list", field="vehicles", value=raw_list, reason="not a list"
        )
        logger.warning(failure.message)
        return [], [failure]
    return _parse_rows(raw_list, parse_vehicle, "vehicle")


def parse_station(raw: Any) -> Station:
    mapping = _require_mapping(raw, "station")
    position_raw = _first(mapping, "position", "coordinates")
    if position_raw is None:
        position_raw = mapping
    name = _first(mapping, "name")
    return Station(
        id=_require_str(mapping, "id", "id"),
        name=str(name) if name is not None else "",
        position=parse_coordinates(position_raw),
    )


def parse_stop_time(raw: Any) -> StopTime:
    mapping = _require_mapping(raw, "stop_time")
    sequence = _first(mapping, "sequence", "stopSequence", "stop_sequence")
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        raise ValidationFailure(
            "'sequence' must be an integer", field="sequence", value=sequence, reason="wrong type"
        )
    arrival = _first(mapping, "arrivalTime", "arrival_time")
    if arrival is not None and not isinstance(arrival, str):
        raise ValidationFailure(
            "'arrival_time' must be HH:MM:SS", field="arrival_time", value=arrival, reason="wrong type"
        )
    return StopTime(
        trip_id=_require_str(mapping, "trip_id", "tripId", "trip_id"),
        stop_id=_require_str(mapping, "stop_id", "stopId", "stop_id"),
        sequence=sequence,
        arrival_time=arrival,
    )


def parse_stop_times(raw_list: Any) -> tuple[list[StopTime], list[ValidationFailure]]:
    if not isinstance(raw_list, list):
        failure = ValidationFailure(
            "Stop times must be a list", field="stop_times", value=raw_list, reason="not a list"
        )
        logger.warning(failure.message)
        return [], [failure]
    return _parse_rows(raw_list, parse_stop_time, "stop time")


def _parse_rows(rows: Iterable[Any], parser: Any, kind: str) -> tuple[list[Any], list[ValidationFailure]]:
    parsed: list[Any] = []
    failures: list[ValidationFailure] = []
    for index, row in enumerate(rows):
        try:
            parsed.append(parser(row))
        except ValidationFailure as failure:
            logger.warning("Dropping %s #%d: %s", kind, index, failure.message)
            failures.append(failure)
    return parsed, failures
