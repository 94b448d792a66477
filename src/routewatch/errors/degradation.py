"""Graceful degradation — deterministic fallbacks selected by failure type and severity.

Every handled failure is recorded as a DegradationEvent. The system-wide
level is the highest level in the (unbounded, clearable) history.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from routewatch.cache.manager import CacheManager
from routewatch.config.defaults import DEFAULT_CACHE_POLICIES
from routewatch.config.manager import sanitize_config
from routewatch.config.schema import RouteFilteringConfig
from routewatch.errors.circuit_breaker import CircuitBreakerRegistry
from routewatch.errors.exceptions import ConfigurationFailure
from routewatch.types import RouteActivityInfo, Vehicle

logger = logging.getLogger(__name__)

PERFORMANCE_COMPONENT = "performance-monitor"
VEHICLE_CACHE_KEY = "vehicles:live"


class DegradationLevel(StrEnum):
    NONE = "none"
    MINIMAL = "minimal"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: DegradationLevel) -> bool:
        return self.rank >= other.rank


_LEVEL_ORDER = list(DegradationLevel)


class FallbackStrategy(StrEnum):
    USE_CACHE = "use_cache"
    USE_DEFAULTS = "use_defaults"
    SKIP_FILTERING = "skip_filtering"
    EMERGENCY_MODE = "emergency_mode"


class FailureType(StrEnum):
    MISSING_VEHICLE_DATA = "missing_vehicle_data"
    ROUTE_DATA_UNAVAILABLE = "route_data_unavailable"
    POOR_DATA_QUALITY = "poor_data_quality"
    PERFORMANCE_ISSUE = "performance_issue"
    INVALID_CONFIGURATION = "invalid_configuration"
    CRITICAL_FAILURE = "critical_failure"


# Estimated recovery time in seconds per level
_RECOVERY_SECONDS: dict[DegradationLevel, float] = {
    DegradationLevel.NONE: 30,
    DegradationLevel.MINIMAL: 60,
    DegradationLevel.MODERATE: 120,
    DegradationLevel.SEVERE: 180,
    DegradationLevel.CRITICAL: 300,
}

CACHE_CONFIDENCE = 0.4
VEHICLE_DEFAULTS_CONFIDENCE = 0.1
EMERGENCY_CONFIDENCE = 0.0
ROUTE_DEFAULTS_CONFIDENCE = 0.2
SKIP_FILTERING_CONFIDENCE = 0.5

# (response_time_ms, memory_usage, error_rate) lower bounds, most severe first
_PERFORMANCE_THRESHOLDS: list[tuple[DegradationLevel, float, float, float]] = [
    (DegradationLevel.CRITICAL, 10_000, 0.9, 0.5),
    (DegradationLevel.SEVERE, 5_000, 0.8, 0.3),
    (DegradationLevel.MODERATE, 2_000, 0.7, 0.1),
    (DegradationLevel.MINIMAL, 1_000, 0.6, 0.05),
]


def max_level(levels: list[DegradationLevel]) -> DegradationLevel:
    return max(levels, key=lambda lv: lv.rank, default=DegradationLevel.NONE)


class DegradationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_type: FailureType
    message: str
    level: DegradationLevel
    strategy: FallbackStrategy
    affected_components: list[str] = Field(default_factory=list)
    recovery_actions: list[str] = Field(default_factory=list)
    estimated_recovery_seconds: float = 0.0
    timestamp: float = Field(default_factory=time.time)


class FallbackVehicleData(BaseModel):
    vehicles: list[Vehicle] = Field(default_factory=list)
    source: str = "defaults"
    confidence: float = 0.0
    limitations: list[str] = Field(default_factory=list)
    last_updated: float | None = None
    emergency_mode: bool = False


class FallbackRouteActivity(BaseModel):
    activity: dict[str, RouteActivityInfo] = Field(default_factory=dict)
    source: str = "defaults"
    confidence: float = 0.0
    limitations: list[str] = Field(default_factory=list)
    last_updated: float | None = None
    filtering_enabled: bool = True


class PerformanceIssue(BaseModel):
    """Observed performance metrics. ``severity`` overrides the derived level."""

    component: str = "filtering"
    response_time_ms: float | None = None
    memory_usage: float | None = None
    error_rate: float | None = None
    severity: DegradationLevel | None = None
    recommended_actions: list[str] = Field(default_factory=list)

    def derived_level(self) -> DegradationLevel:
        if self.severity is not None:
            return self.severity
        for level, rt, mem, err in _PERFORMANCE_THRESHOLDS:
            if (
                (self.response_time_ms is not None and self.response_time_ms > rt)
                or (self.memory_usage is not None and self.memory_usage > mem)
                or (self.error_rate is not None and self.error_rate > err)
            ):
                return level
        return DegradationLevel.NONE


class GracefulDegradation:
    """Selects and records fallbacks; remembers last-known-good data for USE_CACHE."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        cache: CacheManager | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._breakers = breakers
        self._cache = cache
        self._clock = clock
        self._history: list[DegradationEvent] = []
        self._last_vehicles: tuple[list[Vehicle], float] | None = None
        self._last_activity: tuple[dict[str, RouteActivityInfo], float] | None = None
        self._emergency = False
        self._filtering_skipped = False

    # ------------------------------------------------------------------
    # Last-known-good data
    # ------------------------------------------------------------------

    def remember_vehicles(self, vehicles: list[Vehicle]) -> None:
        self._last_vehicles = (list(vehicles), self._clock())

    def remember_route_activity(self, activity: Mapping[str, RouteActivityInfo]) -> None:
        self._last_activity = (dict(activity), self._clock())

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handle_missing_vehicle_data(
        self, level: DegradationLevel, reason: str = ""
    ) -> FallbackVehicleData:
        message = reason or "Vehicle data unavailable"
        if level == DegradationLevel.CRITICAL:
            return self._enter_emergency(message)

        if not level.at_least(DegradationLevel.SEVERE):
            cached = self._cached_vehicles()
            if cached is not None:
                vehicles, updated = cached
                self._record(
                    FailureType.MISSING_VEHICLE_DATA,
                    message,
                    level,
                    FallbackStrategy.USE_CACHE,
                    ["vehicle-data"],
                    ["Retry the vehicle feed", "Serve last known positions"],
                )
                return FallbackVehicleData(
                    vehicles=vehicles,
                    source="cache",
                    confidence=CACHE_CONFIDENCE,
                    limitations=[
                        "Vehicle positions may be out of date",
                        "Live tracking temporarily unavailable",
                    ],
                    last_updated=updated,
                )

        self._record(
            FailureType.MISSING_VEHICLE_DATA,
            message,
            level,
            FallbackStrategy.USE_DEFAULTS,
            ["vehicle-data"],
            ["Retry the vehicle feed"],
        )
        return FallbackVehicleData(
            source="defaults",
            confidence=VEHICLE_DEFAULTS_CONFIDENCE,
            limitations=["No vehicle data available", "Live tracking unavailable"],
        )

    def handle_route_data_unavailable(
        self,
        level: DegradationLevel,
        strategy: FallbackStrategy | None = None,
        reason: str = "",
    ) -> FallbackRouteActivity:
        message = reason or "Route activity data unavailable"
        if strategy == FallbackStrategy.SKIP_FILTERING:
            self._filtering_skipped = True
            self._record(
                FailureType.ROUTE_DATA_UNAVAILABLE,
                message,
                level,
                FallbackStrategy.SKIP_FILTERING,
                ["route-activity", "vehicle-filter"],
                ["Show all vehicles without distance filtering"],
            )
            return FallbackRouteActivity(
                source="defaults",
                confidence=SKIP_FILTERING_CONFIDENCE,
                limitations=["Busy-route distance filtering disabled"],
                filtering_enabled=False,
            )

        if level == DegradationLevel.MODERATE and self._last_activity is not None:
            activity, updated = self._last_activity
            self._record(
                FailureType.ROUTE_DATA_UNAVAILABLE,
                message,
                level,
                FallbackStrategy.USE_CACHE,
                ["route-activity"],
                ["Serve last known route classifications"],
            )
            return FallbackRouteActivity(
                activity=activity,
                source="cache",
                confidence=CACHE_CONFIDENCE,
                limitations=["Route classifications may be out of date"],
                last_updated=updated,
            )

        self._record(
            FailureType.ROUTE_DATA_UNAVAILABLE,
            message,
            level,
            FallbackStrategy.USE_DEFAULTS,
            ["route-activity"],
            ["Treat every route as quiet"],
        )
        return FallbackRouteActivity(
            source="defaults",
            confidence=ROUTE_DEFAULTS_CONFIDENCE,
            limitations=["Route classifications unavailable"],
        )

    def handle_performance_issue(self, issue: PerformanceIssue) -> DegradationEvent:
        level = issue.derived_level()
        if level == DegradationLevel.CRITICAL:
            strategy = FallbackStrategy.EMERGENCY_MODE
            self._breakers.record_failure(PERFORMANCE_COMPONENT, force=True)
            if not self._emergency:
                logger.error("Entering emergency mode: %s is critical", issue.component)
            self._emergency = True
        elif level in (DegradationLevel.MODERATE, DegradationLevel.SEVERE):
            strategy = FallbackStrategy.USE_CACHE
        else:
            strategy = FallbackStrategy.USE_DEFAULTS
        return self._record(
            FailureType.PERFORMANCE_ISSUE,
            f"Performance issue in {issue.component}",
            level,
            strategy,
            [issue.component, PERFORMANCE_COMPONENT],
            list(issue.recommended_actions),
        )

    def handle_poor_data_quality(self, invalid_ratio: float, total: int) -> DegradationEvent:
        level = DegradationLevel.SEVERE if invalid_ratio > 0.8 else DegradationLevel.MODERATE
        return self._record(
            FailureType.POOR_DATA_QUALITY,
            f"{invalid_ratio:.0%} of {total} vehicles failed validation",
            level,
            FallbackStrategy.USE_CACHE,
            ["route-activity-analyzer"],
            ["Check the upstream vehicle feed"],
        )

    def handle_invalid_configuration(
        self,
        values: Mapping[str, Any],
        base: RouteFilteringConfig | None = None,
    ) -> RouteFilteringConfig:
        """Sanitize field by field; any fallback is recorded at MINIMAL."""
        config, failures = sanitize_config(values, base)
        if failures:
            self.record_configuration_fallback(failures)
        return config

    def record_configuration_fallback(self, failures: list[ConfigurationFailure]) -> DegradationEvent:
        fields = ", ".join(f.field for f in failures)
        return self._record(
            FailureType.INVALID_CONFIGURATION,
            f"Invalid configuration fields replaced with defaults: {fields}",
            DegradationLevel.MINIMAL,
            FallbackStrategy.USE_DEFAULTS,
            ["route-filtering-config"],
            [f"Review the value of '{f.field}'" for f in failures],
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def current_level(self) -> DegradationLevel:
        return max_level([e.level for e in self._history])

    def history(self) -> list[DegradationEvent]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
        self._emergency = False
        self._filtering_skipped = False

    @property
    def emergency_mode_active(self) -> bool:
        return self._emergency

    def exit_emergency_mode(self) -> None:
        if self._emergency:
            logger.info("Leaving emergency mode")
        self._emergency = False

    @property
    def filtering_skipped(self) -> bool:
        return self._filtering_skipped

    def restore_filtering(self) -> None:
        self._filtering_skipped = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached_vehicles(self) -> tuple[list[Vehicle], float] | None:
        if self._last_vehicles is not None:
            age = self._clock() - self._last_vehicles[1]
            if age <= self._vehicle_max_age():
                return self._last_vehicles
            logger.debug("Last known vehicles are %.0fs old, not serving them", age)
        if self._cache is None:
            return None
        stale = self._cache.get_stale(VEHICLE_CACHE_KEY)
        if stale is None:
            return None
        value, age, _is_stale = stale
        if not isinstance(value, list):
            return None
        return [v for v in value if isinstance(v, Vehicle)], self._clock() - age

    def _vehicle_max_age(self) -> float:
        if self._cache is not None:
            return self._cache.policy_for(VEHICLE_CACHE_KEY).max_age
        return float(DEFAULT_CACHE_POLICIES["vehicles"]["max_age"])

    def _enter_emergency(self, message: str) -> FallbackVehicleData:
        self._emergency = True
        logger.error("Entering emergency mode: %s", message)
        self._record(
            FailureType.CRITICAL_FAILURE,
            message,
            DegradationLevel.CRITICAL,
            FallbackStrategy.EMERGENCY_MODE,
            ["vehicle-data", "route-activity", "vehicle-filter"],
            ["Restart the data feed", "Reset circuit breakers once the source recovers"],
        )
        return FallbackVehicleData(
            source="defaults",
            confidence=EMERGENCY_CONFIDENCE,
            limitations=["Emergency mode active", "No live data is being shown"],
            emergency_mode=True,
        )

    def _record(
        self,
        failure_type: FailureType,
        message: str,
        level: DegradationLevel,
        strategy: FallbackStrategy,
        components: list[str],
        actions: list[str],
    ) -> DegradationEvent:
        event = DegradationEvent(
            failure_type=failure_type,
            message=message,
            level=level,
            strategy=strategy,
            affected_components=components,
            recovery_actions=actions,
            estimated_recovery_seconds=_RECOVERY_SECONDS[level],
            timestamp=self._clock(),
        )
        self._history.append(event)
        logger.info("Degradation recorded: %s (%s, %s)", message, level.value, strategy.value)
        return event
