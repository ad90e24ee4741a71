"""Core utilities for quotaguard."""

from quotaguard.app.core.config import Settings, settings
from quotaguard.app.core.limits import (
    DEFAULT_LIMITS,
    UNLIMITED_TIER,
    EndpointQuota,
    QuotaConfig,
    SlowStartConfig,
    default_quota_config,
    parse_quota_config,
)
from quotaguard.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "DEFAULT_LIMITS",
    "UNLIMITED_TIER",
    "EndpointQuota",
    "QuotaConfig",
    "SlowStartConfig",
    "default_quota_config",
    "parse_quota_config",
    "get_log_context",
    "get_logger",
    "setup_logging",
]
