"""Route activity analysis — group vehicles by route and classify busy/quiet."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from routewatch.analysis.geo import is_valid_coordinates
from routewatch.cache.keys import generate_cache_key
from routewatch.cache.manager import CacheManager
from routewatch.config.defaults import (
    DEFAULT_POSITION_ACCURACY_METERS,
    DEFAULT_STALE_VEHICLE_SECONDS,
)
from routewatch.config.manager import RouteFilteringConfigManager
from routewatch.config.schema import ConfigChangeEvent, RouteFilteringConfig
from routewatch.errors.circuit_breaker import CircuitBreakerRegistry
from routewatch.errors.degradation import DegradationLevel, GracefulDegradation
from routewatch.events.log import DebugLevel, EventLog
from routewatch.types import (
    RouteActivityInfo,
    RouteActivitySnapshot,
    RouteClassification,
    Vehicle,
    VehicleDataQuality,
)

logger = logging.getLogger(__name__)

ANALYZER_COMPONENT = "route-activity-analyzer"
ROUTE_ACTIVITY_PREFIX = "route_activity"

# Invalid share of a snapshot above which data quality counts as poor
_POOR_QUALITY_RATIO = 0.5


def classify_route(route_id: str, vehicle_count: int, threshold: int) -> RouteActivityInfo:
    classification = (
        RouteClassification.BUSY if vehicle_count >= threshold else RouteClassification.QUIET
    )
    return RouteActivityInfo(
        route_id=route_id, vehicle_count=vehicle_count, classification=classification
    )


def get_route_vehicle_count(route_id: str, vehicles: Iterable[Vehicle]) -> int:
    return sum(1 for v in vehicles if v is not None and v.route_id == route_id)


class RouteActivityAnalyzer:
    """Classifies routes from a vehicle snapshot, memoized through the cache.

    Classification never suspends: memoization uses the cache's synchronous
    ``peek``/``set``. Any config change drops memoized results before the
    update returns.
    """

    def __init__(
        self,
        config_manager: RouteFilteringConfigManager,
        cache: CacheManager,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        degradation: GracefulDegradation | None = None,
        event_log: EventLog | None = None,
        stale_after: float = DEFAULT_STALE_VEHICLE_SECONDS,
        position_accuracy_threshold: float = DEFAULT_POSITION_ACCURACY_METERS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config_manager = config_manager
        self._cache = cache
        self._breakers = breakers
        self._degradation = degradation
        self._event_log = event_log
        self._stale_after = stale_after
        self._accuracy_threshold = position_accuracy_threshold
        self._clock = clock
        self._latest: RouteActivitySnapshot | None = None
        self._unsubscribe = config_manager.on_config_change(self._on_config_change)

    def analyze_route_activity(
        self,
        vehicles: list[Vehicle] | None,
        config: RouteFilteringConfig | None = None,
    ) -> dict[str, RouteActivityInfo]:
        if not vehicles:
            logger.debug("No vehicles to analyze")
            if self._degradation is not None:
                self._degradation.handle_missing_vehicle_data(
                    DegradationLevel.MODERATE, "Empty vehicle snapshot"
                )
            return {}

        config = config or self._config_manager.get_config()
        cache_key = self._cache_key(vehicles, config)
        cached = self._cache.peek(cache_key)
        if cached is not None:
            return dict(cached)
        if self._breakers is not None and not self._breakers.allow(ANALYZER_COMPONENT):
            return self._fallback_activity()

        valid = self.filter_valid_vehicles(vehicles)
        self._report_quality(len(vehicles), len(vehicles) - len(valid))

        counts: dict[str, int] = {}
        for vehicle in valid:
            counts[vehicle.route_id] = counts.get(vehicle.route_id, 0) + 1

        now = self._clock()
        result: dict[str, RouteActivityInfo] = {}
        for route_id in sorted(counts):
            info = classify_route(route_id, counts[route_id], config.busy_route_threshold)
            info = info.model_copy(update={"computed_at": now})
            result[route_id] = info
            logger.debug(
                "Route %s: %d vehicles -> %s", route_id, info.vehicle_count, info.classification
            )
            if self._event_log is not None:
                self._event_log.record(
                    "classify_route",
                    route_id=route_id,
                    decision=info.classification.value,
                    reason=f"{info.vehicle_count} vehicles, threshold {config.busy_route_threshold}",
                )

        self._cache.set(cache_key, result, config=self._cache.policy_for(cache_key))
        self._latest = RouteActivitySnapshot(
            routes=result,
            total_vehicles=len(valid),
            busy_routes=[r for r, i in result.items() if i.classification == RouteClassification.BUSY],
            quiet_routes=[r for r, i in result.items() if i.classification == RouteClassification.QUIET],
            timestamp=now,
        )
        if self._degradation is not None:
            self._degradation.remember_route_activity(result)
        return dict(result)

    def validate_vehicle_data(self, vehicle: Any) -> VehicleDataQuality:
        has_fields = bool(
            vehicle is not None
            and getattr(vehicle, "id", None)
            and getattr(vehicle, "route_id", None)
        )
        position = getattr(vehicle, "position", None)
        position_ok = is_valid_coordinates(position)
        accuracy = getattr(position, "accuracy", None)
        if position_ok and accuracy is not None and accuracy > self._accuracy_threshold:
            position_ok = False

        timestamp = getattr(vehicle, "timestamp", None)
        staleness = 0.0
        recent = False
        if timestamp is not None:
            try:
                age = self._clock() - timestamp.timestamp()
            except (AttributeError, TypeError, ValueError, OverflowError):
                age = None
            if age is not None:
                recent = age <= self._stale_after
                staleness = max(0.0, min(1.0, 1.0 - max(age, 0.0) / self._stale_after))

        return VehicleDataQuality(
            is_position_valid=position_ok,
            is_timestamp_recent=recent,
            has_required_fields=has_fields,
            staleness_score=staleness,
        )

    def filter_valid_vehicles(self, vehicles: Iterable[Vehicle | None]) -> list[Vehicle]:
        valid: list[Vehicle] = []
        for vehicle in vehicles:
            quality = self.validate_vehicle_data(vehicle)
            if quality.is_valid:
                valid.append(vehicle)  # type: ignore[arg-type]
                continue
            logger.debug("Dropping vehicle %s: %s", getattr(vehicle, "id", None), quality)
            if self._event_log is not None:
                self._event_log.record(
                    "validate_vehicle",
                    level=DebugLevel.WARNING,
                    vehicle_id=str(getattr(vehicle, "id", "") or ""),
                    route_id=str(getattr(vehicle, "route_id", "") or ""),
                    decision="excluded",
                    reason=_quality_reason(quality),
                )
        return valid

    def latest_snapshot(self) -> RouteActivitySnapshot | None:
        return self._latest

    def clear_cache(self) -> int:
        self._latest = None
        return self._cache.invalidate_prefix(ROUTE_ACTIVITY_PREFIX)

    def close(self) -> None:
        self._unsubscribe()

    def _fallback_activity(self) -> dict[str, RouteActivityInfo]:
        logger.warning("Route activity circuit is open, serving fallback classifications")
        if self._degradation is None:
            return {}
        fallback = self._degradation.handle_route_data_unavailable(
            DegradationLevel.MODERATE, reason="Route activity analysis circuit open"
        )
        return dict(fallback.activity)

    def _report_quality(self, total: int, invalid: int) -> None:
        ratio = invalid / total if total else 0.0
        if ratio > _POOR_QUALITY_RATIO:
            logger.warning("Poor vehicle data quality: %d of %d invalid", invalid, total)
            if self._degradation is not None:
                self._degradation.handle_poor_data_quality(ratio, total)
            if self._breakers is not None:
                self._breakers.record_failure(ANALYZER_COMPONENT)
        elif self._breakers is not None:
            self._breakers.record_success(ANALYZER_COMPONENT)

    def _cache_key(self, vehicles: list[Vehicle], config: RouteFilteringConfig) -> str:
        fingerprint = sorted(
            (str(getattr(v, "id", "")), str(getattr(v, "route_id", "")), _timestamp_repr(v))
            for v in vehicles
            if v is not None
        )
        return generate_cache_key(ROUTE_ACTIVITY_PREFIX, fingerprint, config.model_dump())

    def _on_config_change(self, event: ConfigChangeEvent) -> None:
        removed = self.clear_cache()
        logger.debug("Config changed, dropped %d memoized classifications", removed)


def _timestamp_repr(vehicle: Any) -> str:
    timestamp = getattr(vehicle, "timestamp", None)
    return timestamp.isoformat() if hasattr(timestamp, "isoformat") else str(timestamp)


def _quality_reason(quality: VehicleDataQuality) -> str:
    problems = []
    if not quality.has_required_fields:
        problems.append("missing id or route")
    if not quality.is_position_valid:
        problems.append("invalid position")
    if not quality.is_timestamp_recent:
        problems.append("stale timestamp")
    return "; ".join(problems)
