"""Tests for RouteFilteringConfigManager and per-field sanitizing."""

import pytest
from pydantic import ValidationError

from routewatch.config.manager import RouteFilteringConfigManager, sanitize_config, validate_field
from routewatch.config.schema import CacheConfig, RouteFilteringConfig
from routewatch.errors.exceptions import ConfigurationFailure


class TestValidateField:
    def test_valid(self):
        assert validate_field("busy_route_threshold", 10) == 10

    @pytest.mark.parametrize(
        "name,value",
        [
            ("busy_route_threshold", 0),
            ("busy_route_threshold", 51),
            ("busy_route_threshold", "5"),
            ("busy_route_threshold", True),
            ("distance_filter_threshold", 99),
            ("distance_filter_threshold", 10_001),
            ("enable_debug_logging", "yes"),
        ],
    )
    def test_invalid(self, name, value):
        with pytest.raises(ConfigurationFailure) as excinfo:
            validate_field(name, value)
        assert excinfo.value.field == name
        assert excinfo.value.value == value


class TestSanitizeConfig:
    def test_invalid_field_replaced_valid_sibling_kept(self):
        config, failures = sanitize_config(
            {"busy_route_threshold": -1, "distance_filter_threshold": 800}
        )
        assert config.busy_route_threshold == 5
        assert config.distance_filter_threshold == 800
        assert [f.field for f in failures] == ["busy_route_threshold"]

    def test_camel_case_aliases(self):
        config, failures = sanitize_config({"busyRouteThreshold": 9, "enableDebugLogging": True})
        assert config.busy_route_threshold == 9
        assert config.enable_debug_logging is True
        assert failures == []

    def test_unknown_keys_ignored(self):
        config, failures = sanitize_config({"colour": "blue"})
        assert config == RouteFilteringConfig()
        assert failures == []

    def test_invalid_falls_back_to_default_not_base(self):
        base = RouteFilteringConfig(busy_route_threshold=12)
        config, _ = sanitize_config({"busy_route_threshold": 0}, base)
        assert config.busy_route_threshold == 5


class TestConfigManager:
    def test_defaults(self):
        assert RouteFilteringConfigManager().get_config() == RouteFilteringConfig()

    def test_initial_mapping_is_sanitized(self):
        failures = []
        manager = RouteFilteringConfigManager(
            {"busy_route_threshold": 100}, on_invalid=failures.extend
        )
        assert manager.get_config().busy_route_threshold == 5
        assert len(failures) == 1

    def test_update_returns_change_event(self, clock):
        manager = RouteFilteringConfigManager(clock=clock)
        event = manager.update_config({"busy_route_threshold": 8})
        assert event.previous.busy_route_threshold == 5
        assert event.current.busy_route_threshold == 8
        assert event.changes == {"busy_route_threshold": 8}
        assert event.timestamp == clock.now
        assert manager.get_config().busy_route_threshold == 8

    def test_config_is_immutable(self):
        manager = RouteFilteringConfigManager()
        with pytest.raises(ValidationError):
            manager.get_config().busy_route_threshold = 1

    def test_subscribers_notified_and_unsubscribe(self):
        manager = RouteFilteringConfigManager()
        seen = []
        unsubscribe = manager.on_config_change(seen.append)
        manager.update_config({"distance_filter_threshold": 900})
        unsubscribe()
        manager.update_config({"distance_filter_threshold": 1000})
        assert len(seen) == 1
        assert seen[0].changes == {"distance_filter_threshold": 900}

    def test_on_invalid_receives_failures(self):
        failures = []
        manager = RouteFilteringConfigManager(on_invalid=failures.extend)
        manager.update_config({"distance_filter_threshold": 5})
        assert [f.field for f in failures] == ["distance_filter_threshold"]

    def test_reset_to_defaults(self):
        manager = RouteFilteringConfigManager({"busy_route_threshold": 9})
        event = manager.reset_to_defaults()
        assert manager.get_config() == RouteFilteringConfig()
        assert event.changes == {"busy_route_threshold": 5}

    def test_validate_config(self):
        manager = RouteFilteringConfigManager()
        result = manager.validate_config({"busy_route_threshold": 0, "distance_filter_threshold": 700})
        assert result.is_valid is False
        assert len(result.errors) == 1
        assert result.sanitized.distance_filter_threshold == 700
        assert manager.get_config().distance_filter_threshold == 2000  # not applied


class TestCacheConfig:
    def test_max_age_must_cover_ttl(self):
        with pytest.raises(ValidationError):
            CacheConfig(ttl=10, max_age=5)
