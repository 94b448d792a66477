"""Analysis — route activity classification, vehicle filtering and geometry."""

from routewatch.analysis.activity import RouteActivityAnalyzer, classify_route
from routewatch.analysis.direction import analyze_vehicle_direction
from routewatch.analysis.filtering import VehicleFilter
from routewatch.analysis.geo import (
    calculate_bearing,
    calculate_proximity,
    haversine_distance,
    is_valid_coordinates,
)
from routewatch.analysis.transitions import detect_route_transitions

__all__ = [
    "RouteActivityAnalyzer",
    "VehicleFilter",
    "analyze_vehicle_direction",
    "calculate_bearing",
    "calculate_proximity",
    "classify_route",
    "detect_route_transitions",
    "haversine_distance",
    "is_valid_coordinates",
]
