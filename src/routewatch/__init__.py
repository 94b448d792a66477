"""routewatch — busy/quiet route analysis and resilient caching for live transit vehicles."""

from routewatch.core import ConfigUpdateResult, RouteWatch, VehicleFeed

__version__ = "0.1.0"

__all__ = [
    "RouteWatch",
    "VehicleFeed",
    "ConfigUpdateResult",
]
