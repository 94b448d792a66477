"""Arriving / at-stop / departed inference from a trip's stop sequence."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from routewatch.events.log import EventLog
from routewatch.types import (
    ConfidenceLevel,
    DirectionAnalysisResult,
    DirectionStatus,
    StopSequenceItem,
    StopTime,
)

logger = logging.getLogger(__name__)

MINUTES_PER_STOP = 2
RECENT_ARRIVAL_MINUTES = 10
HIGH_CONFIDENCE_STOPS = 3
# GTFS service days run past midnight, never beyond two days
MAX_SCHEDULE_HOURS = 48


def parse_schedule_time(value: str, now: datetime) -> datetime:
    """Resolve ``HH:MM[:SS]`` on the service day of ``now``. Hours may exceed 23."""
    parts = [int(p) for p in value.split(":")]
    if (
        len(parts) not in (2, 3)
        or any(p < 0 for p in parts)
        or parts[0] > MAX_SCHEDULE_HOURS
        or any(p > 59 for p in parts[1:])
    ):
        raise ValueError(f"bad schedule time {value!r}")
    hours, minutes = parts[0], parts[1]
    seconds = parts[2] if len(parts) == 3 else 0
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(hours=hours, minutes=minutes, seconds=seconds)


def analyze_vehicle_direction(
    vehicle: Any,
    target_station: Any,
    stop_times: Any,
    now: datetime | None = None,
    *,
    event_log: EventLog | None = None,
) -> DirectionAnalysisResult:
    """Infer where ``vehicle`` is relative to ``target_station`` on its trip.

    Never raises. Malformed input returns ``unknown``/``low``.
    """
    trip_id = getattr(vehicle, "trip_id", None)
    station_id = getattr(target_station, "id", None)
    if not trip_id or not station_id or not isinstance(stop_times, list):
        return _unknown(vehicle, "missing trip, station or stop times", event_log)

    trip_stops = sorted(
        (
            st
            for st in stop_times
            if isinstance(st, StopTime) and st.trip_id == trip_id and st.stop_id
        ),
        key=lambda st: st.sequence,
    )
    if not trip_stops:
        return _unknown(vehicle, f"no stop times for trip {trip_id}", event_log)

    target = next((st for st in trip_stops if st.stop_id == station_id), None)
    if target is None:
        return _unknown(vehicle, f"station {station_id} not on trip {trip_id}", event_log)

    now = now or datetime.now().astimezone()
    target_seq = target.sequence
    middle_seq = trip_stops[len(trip_stops) // 2].sequence

    if target.arrival_time:
        try:
            scheduled = parse_schedule_time(target.arrival_time, now)
            diff_minutes = (scheduled - now).total_seconds() / 60
        except (ValueError, TypeError, OverflowError) as exc:
            logger.debug("Unparsable arrival time %r: %s", target.arrival_time, exc)
            estimated_seq, confidence = middle_seq, ConfidenceLevel.MEDIUM
        else:
            if diff_minutes > 0:
                estimated_seq = target_seq - math.ceil(diff_minutes / MINUTES_PER_STOP)
                stops_away = target_seq - estimated_seq
                confidence = (
                    ConfidenceLevel.HIGH
                    if stops_away <= HIGH_CONFIDENCE_STOPS
                    else ConfidenceLevel.MEDIUM
                )
            elif diff_minutes > -RECENT_ARRIVAL_MINUTES:
                estimated_seq, confidence = target_seq, ConfidenceLevel.HIGH
            else:
                estimated_seq = target_seq + math.ceil(abs(diff_minutes) / MINUTES_PER_STOP)
                confidence = ConfidenceLevel.MEDIUM
    else:
        estimated_seq, confidence = middle_seq, ConfidenceLevel.LOW

    minutes_since_update = _minutes_since(getattr(vehicle, "timestamp", None), now)
    if estimated_seq < target_seq:
        direction = DirectionStatus.ARRIVING
        remaining = (target_seq - estimated_seq) * MINUTES_PER_STOP
        estimated_minutes = max(1, round(remaining - minutes_since_update))
    elif estimated_seq > target_seq:
        direction = DirectionStatus.DEPARTED
        estimated_minutes = (estimated_seq - target_seq) * MINUTES_PER_STOP
    else:
        direction = DirectionStatus.AT_STOP
        estimated_minutes = 0

    sequence = None
    if len(trip_stops) > 1:
        sequence = [
            StopSequenceItem(
                stop_id=st.stop_id,
                sequence=st.sequence,
                is_current=st.sequence == estimated_seq,
                is_destination=i == len(trip_stops) - 1,
            )
            for i, st in enumerate(trip_stops)
        ]

    logger.debug(
        "Vehicle %s relative to %s: %s (%s, %d min)",
        getattr(vehicle, "id", None),
        station_id,
        direction,
        confidence,
        estimated_minutes,
    )
    return DirectionAnalysisResult(
        direction=direction,
        confidence=confidence,
        estimated_minutes=estimated_minutes,
        stop_sequence=sequence,
    )


def _minutes_since(timestamp: Any, now: datetime) -> float:
    if not isinstance(timestamp, datetime):
        return 0.0
    try:
        return max(0.0, (now - timestamp).total_seconds() / 60)
    except TypeError:
        # naive vs aware
        return 0.0


def _unknown(vehicle: Any, reason: str, event_log: EventLog | None) -> DirectionAnalysisResult:
    logger.debug("Direction unknown for %s: %s", getattr(vehicle, "id", None), reason)
    if event_log is not None:
        event_log.record(
            "analyze_direction",
            vehicle_id=str(getattr(vehicle, "id", "") or ""),
            route_id=str(getattr(vehicle, "route_id", "") or ""),
            decision=DirectionStatus.UNKNOWN.value,
            reason=reason,
        )
    return DirectionAnalysisResult()
