"""Busy-route distance filtering of the displayed vehicle list."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

from routewatch.analysis.geo import calculate_proximity
from routewatch.config.schema import RouteFilteringConfig
from routewatch.events.log import EventLog
from routewatch.types import (
    Coordinates,
    FilteringDecision,
    FilteringResult,
    RouteActivityInfo,
    RouteClassification,
    Station,
    UserFeedback,
    Vehicle,
)

logger = logging.getLogger(__name__)

ReferencePoint = Coordinates | Station


def _reference_coordinates(points: Sequence[ReferencePoint] | None) -> list[Coordinates]:
    coords: list[Coordinates] = []
    for point in points or []:
        coords.append(point.position if isinstance(point, Station) else point)
    return coords


class VehicleFilter:
    """Quiet routes show every vehicle; busy routes only those near a reference point.

    Routes without activity data are left unfiltered. The input list is never
    mutated and the output keeps input order.
    """

    def __init__(self, event_log: EventLog | None = None) -> None:
        self._event_log = event_log

    def filter_vehicles(
        self,
        vehicles: Sequence[Vehicle],
        route_activity: Mapping[str, RouteActivityInfo],
        config: RouteFilteringConfig,
        reference_points: Sequence[ReferencePoint] | None = None,
    ) -> list[Vehicle]:
        return self.filter_with_metadata(vehicles, route_activity, config, reference_points).vehicles

    def filter_with_metadata(
        self,
        vehicles: Sequence[Vehicle],
        route_activity: Mapping[str, RouteActivityInfo],
        config: RouteFilteringConfig,
        reference_points: Sequence[ReferencePoint] | None = None,
    ) -> FilteringResult:
        vehicles = [v for v in (vehicles or []) if v is not None]
        references = _reference_coordinates(reference_points)
        threshold = config.distance_filter_threshold

        if not references:
            if any(self.should_apply_distance_filter(v.route_id, route_activity) for v in vehicles):
                logger.warning("No reference points given, distance filtering skipped")
            decisions = {
                v.id: FilteringDecision(
                    vehicle_id=v.id,
                    route_id=v.route_id,
                    route_classification=_classification(v.route_id, route_activity),
                    included=True,
                    reason="no reference point",
                )
                for v in vehicles
            }
            return FilteringResult(
                vehicles=list(vehicles),
                decisions=decisions,
                feedback=self._feedback(vehicles, route_activity, config, 0),
                filtering_skipped=True,
            )

        kept: list[Vehicle] = []
        decisions: dict[str, FilteringDecision] = {}
        filtered_out = 0
        for vehicle in vehicles:
            classification = _classification(vehicle.route_id, route_activity)
            if classification != RouteClassification.BUSY:
                decision = FilteringDecision(
                    vehicle_id=vehicle.id,
                    route_id=vehicle.route_id,
                    route_classification=classification,
                    included=True,
                    reason="quiet route" if classification else "no activity data",
                )
            else:
                distance = self._nearest_distance(vehicle, references)
                included = distance <= threshold
                decision = FilteringDecision(
                    vehicle_id=vehicle.id,
                    route_id=vehicle.route_id,
                    route_classification=classification,
                    distance_filter_applied=True,
                    distance_to_nearest=None if math.isinf(distance) else distance,
                    included=included,
                    reason=(
                        f"within {threshold} m" if included else f"beyond {threshold} m"
                    ),
                )
            decisions[vehicle.id] = decision
            if decision.included:
                kept.append(vehicle)
            else:
                filtered_out += 1
            self._log_decision(decision, config)

        return FilteringResult(
            vehicles=kept,
            decisions=decisions,
            feedback=self._feedback(kept, route_activity, config, filtered_out),
        )

    def should_apply_distance_filter(
        self, route_id: str, route_activity: Mapping[str, RouteActivityInfo]
    ) -> bool:
        return _classification(route_id, route_activity) == RouteClassification.BUSY

    def filter_by_distance(
        self,
        vehicles: Sequence[Vehicle],
        reference_points: Sequence[ReferencePoint],
        max_distance: float,
    ) -> list[Vehicle]:
        references = _reference_coordinates(reference_points)
        if not references:
            return list(vehicles)
        return [v for v in vehicles if self._nearest_distance(v, references) <= max_distance]

    def _nearest_distance(self, vehicle: Vehicle, references: list[Coordinates]) -> float:
        return min(
            (
                calculate_proximity(vehicle.position, ref, event_log=self._event_log).distance
                for ref in references
            ),
            default=math.inf,
        )

    def _log_decision(self, decision: FilteringDecision, config: RouteFilteringConfig) -> None:
        if not config.enable_debug_logging:
            return
        logger.debug(
            "Vehicle %s on %s: %s (%s)",
            decision.vehicle_id,
            decision.route_id,
            "kept" if decision.included else "filtered",
            decision.reason,
        )
        if self._event_log is not None:
            self._event_log.record(
                "filter_vehicle",
                vehicle_id=decision.vehicle_id,
                route_id=decision.route_id,
                decision="included" if decision.included else "excluded",
                reason=decision.reason,
            )

    def _feedback(
        self,
        kept: Sequence[Vehicle],
        route_activity: Mapping[str, RouteActivityInfo],
        config: RouteFilteringConfig,
        filtered_out: int,
    ) -> UserFeedback:
        busy = [r for r, i in route_activity.items() if i.classification == RouteClassification.BUSY]
        quiet = [r for r, i in route_activity.items() if i.classification == RouteClassification.QUIET]
        messages: dict[str, str] = {}
        for route_id, info in route_activity.items():
            if info.classification == RouteClassification.BUSY:
                messages[route_id] = (
                    f"Busy route ({info.vehicle_count} vehicles): showing vehicles within "
                    f"{config.distance_filter_threshold} m"
                )
            else:
                messages[route_id] = f"Quiet route ({info.vehicle_count} vehicles): showing all vehicles"

        empty_message = None
        if not kept:
            if filtered_out:
                empty_message = (
                    f"All nearby busy-route vehicles are more than "
                    f"{config.distance_filter_threshold} m away"
                )
            else:
                empty_message = "No vehicles are currently active"

        return UserFeedback(
            total_routes=len(route_activity),
            busy_routes=len(busy),
            quiet_routes=len(quiet),
            distance_filtered_vehicles=filtered_out,
            empty_state_message=empty_message,
            route_status_messages=messages,
        )


def _classification(
    route_id: str, route_activity: Mapping[str, RouteActivityInfo]
) -> RouteClassification | None:
    info: Any = route_activity.get(route_id) if route_activity else None
    return info.classification if info is not None else None
