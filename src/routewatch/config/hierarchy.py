"""Layered configuration: defaults, YAML files, ROUTEWATCH_* env vars, overrides.

Later layers win. Values are not range-checked here; the route filtering
config manager sanitizes whatever comes out.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from routewatch.config.defaults import get_defaults

logger = logging.getLogger(__name__)

ENV_PREFIX = "ROUTEWATCH_"
GLOBAL_CONFIG_PATH = Path.home() / ".routewatch" / "config.yaml"
PROJECT_CONFIG_NAME = "routewatch.yaml"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def load_config_hierarchy(**runtime_overrides: Any) -> dict[str, Any]:
    """Resolve the flat settings dict. ``None`` overrides are ignored."""
    config = get_defaults()
    for source, layer in _layers(runtime_overrides):
        if layer:
            logger.debug("Config from %s: %s", source, sorted(layer))
            config.update(layer)
    return config


def _layers(runtime_overrides: dict[str, Any]) -> Iterator[tuple[str, dict[str, Any] | None]]:
    yield str(GLOBAL_CONFIG_PATH), _load_yaml_config(GLOBAL_CONFIG_PATH)
    project = _find_project_config(Path.cwd())
    if project is not None:
        yield str(project), _load_yaml_config(project)
    yield "environment", _load_env_vars(os.environ)
    yield "runtime", {k: v for k, v in runtime_overrides.items() if v is not None}


def _load_yaml_config(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        return None
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load config %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, ignoring", path)
        return None
    return data


def _find_project_config(start: Path) -> Path | None:
    """Nearest routewatch.yaml at or above ``start``."""
    return next(
        (d / PROJECT_CONFIG_NAME for d in (start, *start.parents) if (d / PROJECT_CONFIG_NAME).exists()),
        None,
    )


def _load_env_vars(environ: Any) -> dict[str, Any]:
    found: dict[str, Any] = {}
    for key in get_defaults():
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is not None:
            found[key] = _coerce_env_value(key, raw)
    return found


def _coerce_env_value(key: str, value: str) -> Any:
    """Parse ``value`` as the type of the default for ``key``; keep it on failure."""
    default = get_defaults().get(key)
    if isinstance(default, bool):
        return value.strip().lower() in _TRUTHY
    if not isinstance(default, (int, float)):
        return value
    try:
        number = float(value)
    except ValueError:
        logger.warning("Cannot read env var for '%s' as a number: %s", key, value)
        return value
    if isinstance(default, int) and number.is_integer():
        return int(number)
    return number
