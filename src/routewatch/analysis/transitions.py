"""Busy/quiet transition detection between two route-activity maps."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from routewatch.types import RouteActivityInfo, RouteTransitionEvent


def detect_route_transitions(
    previous: Mapping[str, RouteActivityInfo],
    new: Mapping[str, RouteActivityInfo],
    config_change: Mapping[str, Any] | None = None,
    clock: Callable[[], float] = time.time,
) -> list[RouteTransitionEvent]:
    """One event per route present in both maps whose classification changed.

    Routes that appear or disappear are not transitions. Sorted by route id.
    """
    now = clock()
    events = []
    for route_id in sorted(set(previous) & set(new)):
        before, after = previous[route_id], new[route_id]
        if before.classification == after.classification:
            continue
        events.append(
            RouteTransitionEvent(
                route_id=route_id,
                previous_classification=before.classification,
                new_classification=after.classification,
                previous_vehicle_count=before.vehicle_count,
                new_vehicle_count=after.vehicle_count,
                timestamp=now,
                config_change=dict(config_change) if config_change is not None else None,
            )
        )
    return events
