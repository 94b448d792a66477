"""Package-level default configuration values."""

from __future__ import annotations

from typing import Any

# Route filtering
DEFAULT_BUSY_ROUTE_THRESHOLD = 5
DEFAULT_DISTANCE_FILTER_THRESHOLD = 2000  # meters
DEFAULT_ENABLE_DEBUG_LOGGING = False
DEFAULT_PERFORMANCE_MONITORING = True

# (min, max) inclusive bounds for numeric route filtering fields
BUSY_ROUTE_THRESHOLD_RANGE = (1, 50)
DISTANCE_FILTER_THRESHOLD_RANGE = (100, 10_000)

# Vehicle data quality
DEFAULT_STALE_VEHICLE_SECONDS = 5 * 60
DEFAULT_POSITION_ACCURACY_METERS = 1000.0

# Cache
DEFAULT_CACHE_MAX_ENTRIES = 500
DEFAULT_PRESSURE_THRESHOLD = 0.8
DEFAULT_PRESSURE_TARGET_RATIO = 0.75
DEFAULT_EMERGENCY_THRESHOLD = 0.95
DEFAULT_EMERGENCY_TARGET_RATIO = 0.5

# Per key-prefix cache policies: ttl / max_age in seconds
DEFAULT_CACHE_POLICIES: dict[str, dict[str, Any]] = {
    "vehicles": {"ttl": 30, "max_age": 5 * 60, "stale_while_revalidate": True, "max_entries": 50},
    "route_activity": {"ttl": 5, "max_age": 30, "stale_while_revalidate": False, "max_entries": 10},
    "stops": {"ttl": 24 * 3600, "max_age": 7 * 24 * 3600, "stale_while_revalidate": True, "max_entries": 20},
    "routes": {"ttl": 24 * 3600, "max_age": 7 * 24 * 3600, "stale_while_revalidate": True, "max_entries": 20},
    "trips": {"ttl": 3600, "max_age": 24 * 3600, "stale_while_revalidate": True, "max_entries": 50},
    "stop_times": {"ttl": 3600, "max_age": 24 * 3600, "stale_while_revalidate": True, "max_entries": 100},
    "default": {"ttl": 60, "max_age": 10 * 60, "stale_while_revalidate": True, "max_entries": 100},
}

# Circuit breaker
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RECOVERY_TIMEOUT = 30.0  # seconds
DEFAULT_SUCCESS_RESET_THRESHOLD = 3

# Debug event log
DEFAULT_DEBUG_LOG_SIZE = 1000

# Log level
DEFAULT_LOG_LEVEL = "WARNING"


def get_defaults() -> dict[str, Any]:
    """Return all defaults as a flat dictionary for merging."""
    return {
        "busy_route_threshold": DEFAULT_BUSY_ROUTE_THRESHOLD,
        "distance_filter_threshold": DEFAULT_DISTANCE_FILTER_THRESHOLD,
        "enable_debug_logging": DEFAULT_ENABLE_DEBUG_LOGGING,
        "performance_monitoring": DEFAULT_PERFORMANCE_MONITORING,
        "stale_vehicle_seconds": DEFAULT_STALE_VEHICLE_SECONDS,
        "cache_max_entries": DEFAULT_CACHE_MAX_ENTRIES,
        "failure_threshold": DEFAULT_FAILURE_THRESHOLD,
        "recovery_timeout": DEFAULT_RECOVERY_TIMEOUT,
        "log_level": DEFAULT_LOG_LEVEL,
    }
