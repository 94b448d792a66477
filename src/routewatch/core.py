"""Top-level entry point: the RouteWatch context object."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from routewatch.analysis.activity import RouteActivityAnalyzer
from routewatch.analysis.filtering import ReferencePoint, VehicleFilter
from routewatch.analysis.transitions import detect_route_transitions
from routewatch.cache.manager import CacheManager
from routewatch.cache.pressure import PressureProbe
from routewatch.cache.stats import CacheEvent, CacheEventType
from routewatch.config.defaults import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_DEBUG_LOG_SIZE,
    DEFAULT_STALE_VEHICLE_SECONDS,
)
from routewatch.config.hierarchy import load_config_hierarchy
from routewatch.config.manager import RouteFilteringConfigManager
from routewatch.config.schema import (
    CacheConfig,
    CircuitBreakerConfig,
    ConfigChangeEvent,
    RouteFilteringConfig,
)
from routewatch.errors.circuit_breaker import CircuitBreakerInfo, CircuitBreakerRegistry
from routewatch.errors.degradation import (
    PERFORMANCE_COMPONENT,
    DegradationLevel,
    FallbackVehicleData,
    GracefulDegradation,
)
from routewatch.errors.exceptions import CircuitOpenFailure, ConcurrencyFailure, FetchFailure
from routewatch.events.export import export_debug_data
from routewatch.events.log import EventLog
from routewatch.events.subject import Subject
from routewatch.ingest import parse_vehicles
from routewatch.types import (
    FilteringResult,
    RouteActivityInfo,
    RouteTransitionEvent,
    Vehicle,
)

logger = logging.getLogger(__name__)

DATA_SOURCE_COMPONENT = "vehicles"
VEHICLE_CACHE_KEY = "vehicles:live"


class VehicleFeed(BaseModel):
    """Vehicles returned by fetch_vehicles, live or from a fallback."""

    vehicles: list[Vehicle] = Field(default_factory=list)
    source: str = "live"
    confidence: float = 1.0
    limitations: list[str] = Field(default_factory=list)
    emergency_mode: bool = False

    @property
    def degraded(self) -> bool:
        return self.source != "live"


class ConfigUpdateResult(BaseModel):
    change: ConfigChangeEvent
    previous_activity: dict[str, RouteActivityInfo] = Field(default_factory=dict)
    route_activity: dict[str, RouteActivityInfo] = Field(default_factory=dict)
    transitions: list[RouteTransitionEvent] = Field(default_factory=list)
    vehicles: list[Vehicle] = Field(default_factory=list)


class RouteWatch:
    """Process-wide context: cache, config, breakers, degradation and analysis.

    Construct one per process and pass it to whatever needs it.
    """

    def __init__(
        self,
        config: RouteFilteringConfig | Mapping[str, Any] | None = None,
        *,
        cache: CacheManager | None = None,
        cache_policies: dict[str, CacheConfig] | None = None,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        pressure_probe: PressureProbe | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        stale_after: float = DEFAULT_STALE_VEHICLE_SECONDS,
        event_log_size: int = DEFAULT_DEBUG_LOG_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._event_log = EventLog(max_size=event_log_size)
        self._cache = cache or CacheManager(
            policies=cache_policies,
            max_entries=cache_max_entries,
            pressure_probe=pressure_probe,
            clock=clock,
        )
        self._breakers = CircuitBreakerRegistry(breaker_config, clock=clock)
        self._degradation = GracefulDegradation(self._breakers, self._cache, clock=clock)
        self._config_manager = RouteFilteringConfigManager(
            config,
            on_invalid=self._degradation.record_configuration_fallback,
            clock=clock,
        )
        self._analyzer = RouteActivityAnalyzer(
            self._config_manager,
            self._cache,
            breakers=self._breakers,
            degradation=self._degradation,
            event_log=self._event_log,
            stale_after=stale_after,
            clock=clock,
        )
        self._filter = VehicleFilter(event_log=self._event_log)
        self._transitions: Subject[RouteTransitionEvent] = Subject(name="route-transition")
        self._update_in_progress = False

    @classmethod
    def from_config_hierarchy(cls, **overrides: Any) -> RouteWatch:
        """Build from defaults, YAML files, ROUTEWATCH_* env vars and ``overrides``."""
        settings = load_config_hierarchy(**overrides)
        filtering = {k: settings[k] for k in RouteFilteringConfig.model_fields if k in settings}
        return cls(
            filtering,
            cache_max_entries=settings.get("cache_max_entries", DEFAULT_CACHE_MAX_ENTRIES),
            breaker_config=CircuitBreakerConfig(
                failure_threshold=settings["failure_threshold"],
                recovery_timeout=settings["recovery_timeout"],
            ),
            stale_after=settings.get("stale_vehicle_seconds", DEFAULT_STALE_VEHICLE_SECONDS),
        )

    # ── Components ──

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def config_manager(self) -> RouteFilteringConfigManager:
        return self._config_manager

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def degradation(self) -> GracefulDegradation:
        return self._degradation

    @property
    def analyzer(self) -> RouteActivityAnalyzer:
        return self._analyzer

    @property
    def vehicle_filter(self) -> VehicleFilter:
        return self._filter

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def config(self) -> RouteFilteringConfig:
        return self._config_manager.get_config()

    # ── Analysis ──

    def analyze_route_activity(self, vehicles: list[Vehicle] | None) -> dict[str, RouteActivityInfo]:
        return self._analyzer.analyze_route_activity(vehicles)

    def filter_vehicles(
        self,
        vehicles: Sequence[Vehicle],
        route_activity: Mapping[str, RouteActivityInfo] | None = None,
        config: RouteFilteringConfig | None = None,
        reference_points: Sequence[ReferencePoint] | None = None,
    ) -> list[Vehicle]:
        return self.filter_with_metadata(vehicles, route_activity, config, reference_points).vehicles

    def filter_with_metadata(
        self,
        vehicles: Sequence[Vehicle],
        route_activity: Mapping[str, RouteActivityInfo] | None = None,
        config: RouteFilteringConfig | None = None,
        reference_points: Sequence[ReferencePoint] | None = None,
    ) -> FilteringResult:
        """Filter ``vehicles``, or pass them all through while degraded.

        Filtering is skipped in SKIP_FILTERING mode, in emergency mode and
        while the performance circuit is open.
        """
        if self._degradation.filtering_skipped:
            return _unfiltered(vehicles, "Distance filtering skipped while degraded")
        if self._degradation.emergency_mode_active:
            return _unfiltered(vehicles, "Distance filtering skipped in emergency mode")
        if not self._breakers.allow(PERFORMANCE_COMPONENT):
            return _unfiltered(vehicles, "Distance filtering skipped, performance circuit open")
        config = config or self.config
        if route_activity is None:
            route_activity = self.analyze_route_activity(list(vehicles))
        result = self._filter.filter_with_metadata(vehicles, route_activity, config, reference_points)
        self._breakers.record_success(PERFORMANCE_COMPONENT)
        return result

    def detect_route_transitions(
        self,
        previous: Mapping[str, RouteActivityInfo],
        new: Mapping[str, RouteActivityInfo],
        config_delta: Mapping[str, Any] | None = None,
    ) -> list[RouteTransitionEvent]:
        events = detect_route_transitions(previous, new, config_delta, clock=self._clock)
        for event in events:
            logger.info(
                "Route %s: %s -> %s (%d -> %d vehicles)",
                event.route_id,
                event.previous_classification,
                event.new_classification,
                event.previous_vehicle_count,
                event.new_vehicle_count,
            )
            self._transitions.notify(event)
        return events

    # ── Data source ──

    async def fetch_vehicles(
        self,
        fetcher: Callable[[], Awaitable[Any]],
        key: str = VEHICLE_CACHE_KEY,
        *,
        fallback: bool = True,
        force_refresh: bool = False,
    ) -> VehicleFeed:
        """Fetch vehicles through the data-source breaker and the cache.

        The fetcher may return Vehicle objects or raw upstream dicts. Both
        foreground and background fetch failures count against the breaker.
        In emergency mode nothing is fetched while the performance circuit is
        open; the first successful fetch afterwards leaves emergency mode.
        """

        async def guarded() -> list[Vehicle]:
            raw = await self._breakers.call(DATA_SOURCE_COMPONENT, fetcher)
            return _coerce_vehicles(raw)

        trial = False
        if self._degradation.emergency_mode_active:
            if not self._breakers.allow(PERFORMANCE_COMPONENT):
                logger.warning("Emergency mode active, vehicle fetch suspended")
                return _feed_from(
                    self._degradation.handle_missing_vehicle_data(
                        DegradationLevel.CRITICAL, "Emergency mode active"
                    )
                )
            trial = self._breakers.state(PERFORMANCE_COMPONENT).trial_in_flight

        try:
            vehicles = await self._cache.get(key, guarded, force_refresh=force_refresh)
        except (FetchFailure, CircuitOpenFailure) as exc:
            if trial:
                self._breakers.record_failure(PERFORMANCE_COMPONENT)
            if not fallback:
                raise
            logger.warning("Vehicle fetch unavailable, degrading: %s", exc)
            return _feed_from(
                self._degradation.handle_missing_vehicle_data(DegradationLevel.MODERATE, str(exc))
            )
        except BaseException:
            if trial:
                self._breakers.release(PERFORMANCE_COMPONENT)
            raise

        if trial:
            self._breakers.record_success(PERFORMANCE_COMPONENT)
        if self._degradation.emergency_mode_active:
            self._degradation.exit_emergency_mode()
        self._degradation.remember_vehicles(vehicles)
        return VehicleFeed(vehicles=list(vehicles))

    # ── Configuration ──

    def update_config(self, changes: Mapping[str, Any]) -> ConfigChangeEvent:
        return self._config_manager.update_config(changes)

    async def apply_configuration_update(
        self,
        changes: Mapping[str, Any],
        vehicles: list[Vehicle] | None = None,
        *,
        fetcher: Callable[[], Awaitable[Any]] | None = None,
        reference_points: Sequence[ReferencePoint] | None = None,
    ) -> ConfigUpdateResult:
        """Apply a config change, re-classify and report transitions.

        Raises ConcurrencyFailure when another update is still running.
        """
        if self._update_in_progress:
            raise ConcurrencyFailure(
                "A configuration update is already in progress", operation="apply_configuration_update"
            )
        self._update_in_progress = True
        try:
            if vehicles is None and fetcher is not None:
                vehicles = (await self.fetch_vehicles(fetcher)).vehicles
            vehicles = vehicles or []
            previous_activity = self.analyze_route_activity(vehicles)
            change = self.update_config(changes)
            activity = self.analyze_route_activity(vehicles)
            transitions = self.detect_route_transitions(
                previous_activity, activity, change.changes or None
            )
            filtered = self.filter_vehicles(
                vehicles, activity, reference_points=reference_points
            )
        finally:
            self._update_in_progress = False
        return ConfigUpdateResult(
            change=change,
            previous_activity=previous_activity,
            route_activity=activity,
            transitions=transitions,
            vehicles=filtered,
        )

    # ── Subscriptions ──

    def on_cache_update(
        self, key: str, callback: Callable[[CacheEvent], None]
    ) -> Callable[[], None]:
        """Notify ``callback`` when ``key`` (or a ``prefix*`` pattern) is written."""

        def on_event(event: CacheEvent) -> None:
            if event.type == CacheEventType.UPDATED:
                callback(event)

        return self._cache.subscribe(key, on_event)

    def on_route_transition(
        self, callback: Callable[[RouteTransitionEvent], None]
    ) -> Callable[[], None]:
        return self._transitions.subscribe(callback)

    def on_config_change(
        self, callback: Callable[[ConfigChangeEvent], None]
    ) -> Callable[[], None]:
        return self._config_manager.on_config_change(callback)

    # ── Operations ──

    def get_circuit_breaker_state(self, component: str) -> CircuitBreakerInfo:
        return self._breakers.state(component)

    def reset_circuit_breaker(self, component: str) -> None:
        self._breakers.reset(component)

    def export_debug_data(self, format: str = "json") -> str:
        return export_debug_data(
            format,
            self._event_log.events,
            cache_stats=self._cache.get_stats(),
            circuit_breakers=self._breakers.snapshot(),
            degradation_history=self._degradation.history(),
        )

    def close(self) -> None:
        self._analyzer.close()


def _feed_from(data: FallbackVehicleData) -> VehicleFeed:
    return VehicleFeed(
        vehicles=data.vehicles,
        source=data.source,
        confidence=data.confidence,
        limitations=data.limitations,
        emergency_mode=data.emergency_mode,
    )


def _unfiltered(vehicles: Sequence[Vehicle], reason: str) -> FilteringResult:
    logger.debug(reason)
    return FilteringResult(vehicles=list(vehicles), filtering_skipped=True)


def _coerce_vehicles(raw: Any) -> list[Vehicle]:
    if isinstance(raw, list) and all(isinstance(v, Vehicle) for v in raw):
        return list(raw)
    vehicles, _failures = parse_vehicles(raw)
    return vehicles
