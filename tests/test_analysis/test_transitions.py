"""Tests for route transition detection."""

from routewatch.analysis.activity import classify_route
from routewatch.analysis.transitions import detect_route_transitions
from routewatch.types import RouteClassification


def _map(**counts):
    return {route: classify_route(route, n, 5) for route, n in counts.items()}


class TestDetectRouteTransitions:
    def test_quiet_to_busy(self, clock):
        events = detect_route_transitions(_map(X=3), _map(X=7), clock=clock)
        assert len(events) == 1
        event = events[0]
        assert event.route_id == "X"
        assert event.previous_classification == RouteClassification.QUIET
        assert event.new_classification == RouteClassification.BUSY
        assert event.previous_vehicle_count == 3
        assert event.new_vehicle_count == 7
        assert event.timestamp == clock.now
        assert event.config_change is None

    def test_disappearing_route_is_not_a_transition(self):
        assert detect_route_transitions(_map(X=7), _map()) == []

    def test_appearing_route_is_not_a_transition(self):
        assert detect_route_transitions(_map(), _map(X=7)) == []

    def test_same_classification_different_count(self):
        assert detect_route_transitions(_map(X=6), _map(X=9)) == []

    def test_sorted_by_route_with_config_change(self):
        events = detect_route_transitions(
            _map(b=1, a=9, c=2), _map(a=1, b=9, c=2), {"busy_route_threshold": 5}
        )
        assert [e.route_id for e in events] == ["a", "b"]
        assert all(e.config_change == {"busy_route_threshold": 5} for e in events)
