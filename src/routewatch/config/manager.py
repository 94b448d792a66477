"""Live route-filtering configuration with per-field validation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from routewatch.config.schema import (
    ConfigChangeEvent,
    ConfigValidationResult,
    RouteFilteringConfig,
)
from routewatch.errors.exceptions import ConfigurationFailure
from routewatch.events.subject import Subject

logger = logging.getLogger(__name__)

# Accept the camelCase names used by upstream settings payloads
_ALIASES: dict[str, str] = {
    "busyRouteThreshold": "busy_route_threshold",
    "distanceFilterThreshold": "distance_filter_threshold",
    "enableDebugLogging": "enable_debug_logging",
    "performanceMonitoring": "performance_monitoring",
}

_FIELDS = tuple(RouteFilteringConfig.model_fields)


def normalize_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase aliases to field names and drop unknown keys."""
    normalized: dict[str, Any] = {}
    for key, value in values.items():
        name = _ALIASES.get(key, key)
        if name not in _FIELDS:
            logger.warning("Ignoring unknown config key '%s'", key)
            continue
        normalized[name] = value
    return normalized


def validate_field(name: str, value: Any) -> Any:
    """Validate one field in isolation. Raises ConfigurationFailure."""
    try:
        validated = RouteFilteringConfig.model_validate({name: value}, strict=True)
    except ValidationError as exc:
        reason = exc.errors()[0].get("msg", "invalid value")
        raise ConfigurationFailure(
            f"Invalid value for '{name}': {value!r} ({reason})",
            field=name,
            value=value,
            reason=reason,
        ) from exc
    return getattr(validated, name)


def sanitize_config(
    values: Mapping[str, Any],
    base: RouteFilteringConfig | None = None,
) -> tuple[RouteFilteringConfig, list[ConfigurationFailure]]:
    """Merge ``values`` over ``base``, replacing each invalid field with its default.

    Valid sibling fields are kept. Returns the config and the failures found.
    """
    defaults = RouteFilteringConfig()
    merged = (base or defaults).model_dump()
    failures: list[ConfigurationFailure] = []
    for name, value in normalize_keys(values).items():
        try:
            merged[name] = validate_field(name, value)
        except ConfigurationFailure as failure:
            fallback = getattr(defaults, name)
            logger.warning("%s; using default %r", failure.message, fallback)
            merged[name] = fallback
            failures.append(failure)
    return RouteFilteringConfig(**merged), failures


class RouteFilteringConfigManager:
    """Owns the active RouteFilteringConfig and notifies on change.

    ``on_invalid`` receives the field failures from any update that had to
    fall back to defaults.
    """

    def __init__(
        self,
        config: RouteFilteringConfig | Mapping[str, Any] | None = None,
        *,
        on_invalid: Callable[[list[ConfigurationFailure]], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._on_invalid = on_invalid
        self._clock = clock
        self._changes: Subject[ConfigChangeEvent] = Subject(name="config-change")
        if isinstance(config, RouteFilteringConfig):
            self._config = config
        elif config:
            self._config = self._sanitize(config, None)
        else:
            self._config = RouteFilteringConfig()

    def get_config(self) -> RouteFilteringConfig:
        return self._config

    def update_config(self, updates: Mapping[str, Any]) -> ConfigChangeEvent:
        """Apply a partial update. Subscribers run before this returns."""
        previous = self._config
        current = self._sanitize(updates, previous)
        changes = {
            name: getattr(current, name)
            for name in _FIELDS
            if getattr(current, name) != getattr(previous, name)
        }
        self._config = current
        event = ConfigChangeEvent(
            previous=previous, current=current, changes=changes, timestamp=self._clock()
        )
        if changes:
            logger.info("Route filtering config updated: %s", changes)
        self._changes.notify(event)
        return event

    def reset_to_defaults(self) -> ConfigChangeEvent:
        return self.update_config(RouteFilteringConfig().model_dump())

    def validate_config(self, values: Mapping[str, Any]) -> ConfigValidationResult:
        errors: list[str] = []
        for name, value in normalize_keys(values).items():
            try:
                validate_field(name, value)
            except ConfigurationFailure as failure:
                errors.append(failure.message)
        sanitized, _ = sanitize_config(values, self._config)
        return ConfigValidationResult(is_valid=not errors, errors=errors, sanitized=sanitized)

    def on_config_change(self, callback: Callable[[ConfigChangeEvent], None]) -> Callable[[], None]:
        return self._changes.subscribe(callback)

    def _sanitize(
        self, values: Mapping[str, Any], base: RouteFilteringConfig | None
    ) -> RouteFilteringConfig:
        config, failures = sanitize_config(values, base)
        if failures and self._on_invalid is not None:
            self._on_invalid(failures)
        return config
