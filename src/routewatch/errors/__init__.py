"""Error handling — exceptions, circuit breakers, and graceful degradation."""

from routewatch.errors.exceptions import (
    CircuitOpenFailure,
    ConcurrencyFailure,
    ConfigurationFailure,
    FetchFailure,
    RouteWatchError,
    ValidationFailure,
)

__all__ = [
    "RouteWatchError",
    "FetchFailure",
    "ValidationFailure",
    "ConfigurationFailure",
    "CircuitOpenFailure",
    "ConcurrencyFailure",
]
