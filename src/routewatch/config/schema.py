"""Pydantic models for routewatch configuration."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from routewatch.config import defaults


class RouteFilteringConfig(BaseModel):
    """User-adjustable thresholds for busy-route classification and filtering."""

    model_config = ConfigDict(frozen=True)

    busy_route_threshold: int = Field(
        default=defaults.DEFAULT_BUSY_ROUTE_THRESHOLD,
        ge=defaults.BUSY_ROUTE_THRESHOLD_RANGE[0],
        le=defaults.BUSY_ROUTE_THRESHOLD_RANGE[1],
    )
    distance_filter_threshold: int = Field(
        default=defaults.DEFAULT_DISTANCE_FILTER_THRESHOLD,
        ge=defaults.DISTANCE_FILTER_THRESHOLD_RANGE[0],
        le=defaults.DISTANCE_FILTER_THRESHOLD_RANGE[1],
    )
    enable_debug_logging: bool = defaults.DEFAULT_ENABLE_DEBUG_LOGGING
    performance_monitoring: bool = defaults.DEFAULT_PERFORMANCE_MONITORING


class CacheConfig(BaseModel):
    """Cache policy for one key prefix. Times are in seconds."""

    model_config = ConfigDict(frozen=True)

    ttl: float = Field(default=60.0, ge=0)
    max_age: float = Field(default=600.0, ge=0)
    stale_while_revalidate: bool = True
    max_entries: int | None = Field(default=None, ge=1)
    max_size_bytes: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _max_age_covers_ttl(self) -> CacheConfig:
        if self.max_age < self.ttl:
            raise ValueError("max_age must be >= ttl")
        return self


class MemoryPressureConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=defaults.DEFAULT_PRESSURE_THRESHOLD, gt=0, le=1)
    target_ratio: float = Field(default=defaults.DEFAULT_PRESSURE_TARGET_RATIO, gt=0, le=1)
    emergency_threshold: float = Field(default=defaults.DEFAULT_EMERGENCY_THRESHOLD, gt=0)
    emergency_target_ratio: float = Field(
        default=defaults.DEFAULT_EMERGENCY_TARGET_RATIO, gt=0, le=1
    )


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=defaults.DEFAULT_FAILURE_THRESHOLD, ge=1)
    recovery_timeout: float = Field(default=defaults.DEFAULT_RECOVERY_TIMEOUT, ge=0)
    success_reset_threshold: int = Field(default=defaults.DEFAULT_SUCCESS_RESET_THRESHOLD, ge=1)


class ConfigValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    sanitized: RouteFilteringConfig | None = None


class ConfigChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous: RouteFilteringConfig
    current: RouteFilteringConfig
    changes: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


def default_cache_policies() -> dict[str, CacheConfig]:
    """Build the default per-prefix cache policies."""
    return {
        prefix: CacheConfig(**values)
        for prefix, values in defaults.DEFAULT_CACHE_POLICIES.items()
    }
