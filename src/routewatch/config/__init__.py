"""Configuration — defaults, YAML/env hierarchy and typed settings."""

from routewatch.config.hierarchy import load_config_hierarchy
from routewatch.config.schema import (
    CacheConfig,
    CircuitBreakerConfig,
    ConfigChangeEvent,
    ConfigValidationResult,
    MemoryPressureConfig,
    RouteFilteringConfig,
)

__all__ = [
    "RouteFilteringConfig",
    "CacheConfig",
    "CircuitBreakerConfig",
    "MemoryPressureConfig",
    "ConfigChangeEvent",
    "ConfigValidationResult",
    "load_config_hierarchy",
]
