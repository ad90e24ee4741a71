"""Tests for process settings and quota configuration parsing."""

import math

import pytest
from pydantic import ValidationError

from quotaguard.app.core.config import Settings
from quotaguard.app.core.limits import (
    DEFAULT_LIMITS,
    QuotaConfig,
    default_quota_config,
    parse_quota_config,
)
from quotaguard.app.exceptions import ConfigRejectedError


class TestSettings:
    """Test Settings validation."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.redis_enabled is False
        assert settings.security_log_size == 1000
        assert settings.suspicious_denial_threshold == 10
        assert settings.suspicious_window_seconds == 60

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("REDIS_ENABLED", "true")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        settings = Settings(_env_file=None)
        assert settings.redis_enabled is True
        assert settings.redis_url == "redis://cache:6379/2"

    def test_log_format_normalized(self):
        assert Settings(_env_file=None, log_format="JSON").log_format == "json"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("log_format", "xml"),
            ("redis_socket_timeout", 0),
            ("fallback_lock_timeout_seconds", -1),
            ("security_log_size", 0),
            ("suspicious_denial_threshold", -1),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestQuotaConfig:
    """Test quota table parsing."""

    def test_default_limits(self):
        config = default_quota_config()
        checkout = config.get_endpoint("/api/checkout")
        assert (checkout.requests, checkout.window, checkout.burst, checkout.cost) == (10, 60, 2, 5)
        assert checkout.refill_rate == 10 / 60
        assert checkout.ttl_seconds == 120
        assert math.isinf(config.tiers["unlimited"])
        assert config.slow_start.duration_seconds == 300

    def test_multiplier_lookup(self):
        config = default_quota_config()
        assert config.tier_multiplier("premium") == 3
        assert config.tier_multiplier("unknown") == 1.0
        assert config.region_multiplier("ap-south") == 0.6
        assert config.region_multiplier("mars") == 1.0

    def test_unknown_region_uses_default_entry(self):
        config = parse_quota_config({
            "endpoints": {"/x": {"requests": 1, "window": 1}},
            "tiers": {"free": 1},
            "regions": {"default": 0.5},
        })
        assert config.region_multiplier("mars") == 0.5

    def test_camel_case_slow_start(self):
        config = parse_quota_config({
            "endpoints": {"/x": {"requests": 1, "window": 1}},
            "tiers": {"free": 1},
            "slowStart": {"enabled": False, "durationSeconds": 60, "startMultiplier": 0.2},
        })
        assert config.slow_start.enabled is False
        assert config.slow_start.duration_seconds == 60

    def test_passes_through_parsed_config(self):
        config = default_quota_config()
        assert parse_quota_config(config) is config

    @pytest.mark.parametrize(
        "data",
        [
            None,
            ["not", "a", "mapping"],
            {"endpoints": None, "tiers": {"free": 1}},
            {"tiers": {"free": 1}},
            {"endpoints": {"/x": {"requests": 1, "window": 1}}},
            {"endpoints": {"/x": {"requests": 0, "window": 1}}, "tiers": {"free": 1}},
            {"endpoints": {"/x": {"requests": 1, "window": 1}}, "tiers": {"free": -1}},
            {"endpoints": {"/x": {"requests": 1, "window": 1}}, "tiers": {"free": 1}, "regions": {"eu": 0}},
            {"endpoints": {"/x": {"requests": 1, "window": 1, "cost": 0}}, "tiers": {"free": 1}},
        ],
    )
    def test_malformed_config_rejected(self, data):
        with pytest.raises(ConfigRejectedError):
            parse_quota_config(data)

    def test_default_limits_dict_is_valid(self):
        assert isinstance(QuotaConfig.model_validate(DEFAULT_LIMITS), QuotaConfig)
