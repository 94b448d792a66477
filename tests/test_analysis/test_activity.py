"""Tests for RouteActivityAnalyzer."""

import pytest

from routewatch.analysis.activity import (
    ANALYZER_COMPONENT,
    RouteActivityAnalyzer,
    classify_route,
    get_route_vehicle_count,
)
from routewatch.cache.manager import CacheManager
from routewatch.config.manager import RouteFilteringConfigManager
from routewatch.errors.circuit_breaker import CircuitBreakerRegistry, CircuitBreakerState
from routewatch.errors.degradation import DegradationLevel, GracefulDegradation
from routewatch.events.log import EventLog
from routewatch.types import Coordinates, RouteClassification


@pytest.fixture
def analyzer(clock):
    config_manager = RouteFilteringConfigManager(clock=clock)
    cache = CacheManager(clock=clock)
    breakers = CircuitBreakerRegistry(clock=clock)
    degradation = GracefulDegradation(breakers, cache, clock=clock)
    return RouteActivityAnalyzer(
        config_manager,
        cache,
        breakers=breakers,
        degradation=degradation,
        event_log=EventLog(),
        clock=clock,
    )


class TestClassifyRoute:
    def test_busy_at_threshold(self):
        assert classify_route("r1", 5, 5).classification == RouteClassification.BUSY

    def test_quiet_below_threshold(self):
        assert classify_route("r1", 4, 5).classification == RouteClassification.QUIET

    @pytest.mark.parametrize("count", range(0, 12))
    def test_monotonic_in_threshold(self, count):
        # raising the threshold never turns a quiet route busy
        previous = classify_route("r", count, 1).classification
        for threshold in range(2, 15):
            current = classify_route("r", count, threshold).classification
            if previous == RouteClassification.QUIET:
                assert current == RouteClassification.QUIET
            previous = current


class TestAnalyzeRouteActivity:
    def test_groups_and_classifies(self, analyzer, make_vehicle):
        vehicles = [make_vehicle(f"v{i}", "r1") for i in range(5)]
        vehicles += [make_vehicle("w1", "r2"), make_vehicle("w2", "r2")]
        result = analyzer.analyze_route_activity(vehicles)
        assert list(result) == ["r1", "r2"]
        assert result["r1"].vehicle_count == 5
        assert result["r1"].classification == RouteClassification.BUSY
        assert result["r2"].classification == RouteClassification.QUIET

    def test_idempotent(self, analyzer, make_vehicle):
        vehicles = [make_vehicle(f"v{i}", f"r{i % 3}") for i in range(9)]
        assert analyzer.analyze_route_activity(vehicles) == analyzer.analyze_route_activity(
            vehicles
        )

    def test_memoized_in_cache(self, analyzer, make_vehicle):
        vehicles = [make_vehicle("v1")]
        analyzer.analyze_route_activity(vehicles)
        assert analyzer._cache.get_stats().by_prefix == {"route_activity": 1}

    def test_empty_input(self, analyzer):
        assert analyzer.analyze_route_activity([]) == {}
        assert analyzer.analyze_route_activity(None) == {}

    def test_stale_and_invalid_vehicles_dropped(self, analyzer, make_vehicle):
        vehicles = [
            make_vehicle("v1"),
            make_vehicle("v2"),
            make_vehicle("v3"),
            make_vehicle("old", age=301),
            make_vehicle("bad", latitude=95.0),
        ]
        result = analyzer.analyze_route_activity(vehicles)
        assert result["r1"].vehicle_count == 3

    def test_poor_quality_trips_breaker_and_degrades(self, analyzer, make_vehicle):
        vehicles = [make_vehicle("v1")] + [make_vehicle(f"old{i}", age=600) for i in range(3)]
        analyzer.analyze_route_activity(vehicles)
        breaker = analyzer._breakers.state(ANALYZER_COMPONENT)
        assert breaker.failure_count == 1
        assert analyzer._degradation.current_level() == DegradationLevel.MODERATE

    def test_open_circuit_serves_remembered_activity(self, analyzer, clock, make_vehicle):
        for run in range(3):
            poor = [make_vehicle(f"p{run}")]
            poor += [make_vehicle(f"old{run}-{i}", age=600) for i in range(3)]
            analyzer.analyze_route_activity(poor)
        assert analyzer._breakers.state(ANALYZER_COMPONENT).state == CircuitBreakerState.OPEN

        good = [make_vehicle(f"g{i}") for i in range(5)]
        result = analyzer.analyze_route_activity(good)
        assert result["r1"].vehicle_count == 1
        assert analyzer._breakers.state(ANALYZER_COMPONENT).state == CircuitBreakerState.OPEN

        clock.advance(30)
        good = [make_vehicle(f"h{i}") for i in range(5)]
        result = analyzer.analyze_route_activity(good)
        assert result["r1"].vehicle_count == 5
        assert analyzer._breakers.state(ANALYZER_COMPONENT).state == CircuitBreakerState.CLOSED

    def test_very_poor_quality_is_severe(self, analyzer, make_vehicle):
        vehicles = [make_vehicle("v1")] + [make_vehicle(f"old{i}", age=600) for i in range(9)]
        analyzer.analyze_route_activity(vehicles)
        assert analyzer._degradation.current_level() == DegradationLevel.SEVERE

    def test_good_quality_records_success(self, analyzer, make_vehicle):
        analyzer.analyze_route_activity([make_vehicle("v1")])
        assert analyzer._breakers.state(ANALYZER_COMPONENT).consecutive_successes == 1

    def test_config_change_invalidates_memo(self, analyzer, make_vehicle):
        vehicles = [make_vehicle(f"v{i}") for i in range(3)]
        assert analyzer.analyze_route_activity(vehicles)["r1"].classification == "quiet"
        analyzer._config_manager.update_config({"busy_route_threshold": 3})
        assert analyzer._cache.get_stats().by_prefix == {}
        assert analyzer.analyze_route_activity(vehicles)["r1"].classification == "busy"

    def test_latest_snapshot(self, analyzer, make_vehicle):
        analyzer.analyze_route_activity([make_vehicle(f"v{i}") for i in range(5)])
        snapshot = analyzer.latest_snapshot()
        assert snapshot.total_vehicles == 5
        assert snapshot.busy_routes == ["r1"]
        assert analyzer.clear_cache() == 1
        assert analyzer.latest_snapshot() is None


class TestVehicleValidation:
    def test_valid(self, analyzer, make_vehicle):
        quality = analyzer.validate_vehicle_data(make_vehicle("v1"))
        assert quality.is_valid
        assert quality.staleness_score == 1.0

    def test_poor_accuracy(self, analyzer, make_vehicle):
        vehicle = make_vehicle("v1").model_copy(
            update={"position": Coordinates(latitude=46.77, longitude=23.6, accuracy=5000)}
        )
        assert not analyzer.validate_vehicle_data(vehicle).is_position_valid

    def test_none(self, analyzer):
        quality = analyzer.validate_vehicle_data(None)
        assert not quality.is_valid
        assert not quality.has_required_fields

    def test_route_vehicle_count(self, make_vehicle):
        vehicles = [make_vehicle("a", "r1"), make_vehicle("b", "r2"), make_vehicle("c", "r1")]
        assert get_route_vehicle_count("r1", vehicles) == 2
