"""Quota configuration tables.

Per-endpoint base rates, burst sizes and request costs, per-tier and
per-region multipliers, and slow-start parameters. Pure data: the decision
engine reads a ``QuotaConfig`` snapshot once per check, and
``RateLimiter.update_config`` swaps the whole snapshot at once.
"""

import math
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from quotaguard.app.exceptions import ConfigRejectedError

# Tier that bypasses the state store entirely
UNLIMITED_TIER = "unlimited"

DEFAULT_REGION = "default"

REQUIRED_SECTIONS = ("endpoints", "tiers")


class EndpointQuota(BaseModel):
    """Base quota for one endpoint.

    Attributes:
        requests: Requests admitted per window before multipliers
        window: Window length in seconds
        burst: Extra capacity above the steady-state rate
        cost: Tokens consumed by one request
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    requests: int = Field(gt=0)
    window: int = Field(gt=0)
    burst: int = Field(default=0, ge=0)
    cost: int = Field(default=1, gt=0)

    @property
    def refill_rate(self) -> float:
        """Tokens per second, from the unscaled base rate."""
        return self.requests / self.window

    @property
    def ttl_seconds(self) -> int:
        """Idle time after which a bucket for this endpoint is reclaimed."""
        return self.window * 2


class SlowStartConfig(BaseModel):
    """Ramp applied to principals seen for the first time."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = True
    duration_seconds: int = Field(
        default=300,
        gt=0,
        validation_alias=AliasChoices("duration_seconds", "durationSeconds"),
    )
    start_multiplier: float = Field(
        default=0.5,
        gt=0,
        le=1,
        validation_alias=AliasChoices("start_multiplier", "startMultiplier"),
    )


class QuotaConfig(BaseModel):
    """One configuration epoch of quota tables."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    endpoints: dict[str, EndpointQuota]
    tiers: dict[str, float]
    regions: dict[str, float] = Field(default_factory=lambda: {DEFAULT_REGION: 1.0})
    slow_start: SlowStartConfig = Field(
        default_factory=SlowStartConfig,
        validation_alias=AliasChoices("slow_start", "slowStart"),
    )

    @field_validator("tiers")
    @classmethod
    def validate_tiers(cls, v: dict[str, float]) -> dict[str, float]:
        """Validate tier multipliers are positive and finite (except the unlimited sentinel)."""
        for name, multiplier in v.items():
            if name == UNLIMITED_TIER:
                continue
            if not math.isfinite(multiplier) or multiplier <= 0:
                raise ValueError(f"tier {name!r} multiplier must be positive and finite")
        return v

    @field_validator("regions")
    @classmethod
    def validate_regions(cls, v: dict[str, float]) -> dict[str, float]:
        """Validate region multipliers are positive and finite."""
        for name, multiplier in v.items():
            if not math.isfinite(multiplier) or multiplier <= 0:
                raise ValueError(f"region {name!r} multiplier must be positive and finite")
        return v

    def get_endpoint(self, endpoint: str) -> EndpointQuota | None:
        return self.endpoints.get(endpoint)

    def tier_multiplier(self, tier: str) -> float:
        """Multiplier for a tier; unknown tiers get 1.0."""
        return self.tiers.get(tier, 1.0)

    def region_multiplier(self, region: str) -> float:
        """Multiplier for a region; unknown regions get the default region's (1.0 if none)."""
        if region in self.regions:
            return self.regions[region]
        return self.regions.get(DEFAULT_REGION, 1.0)


DEFAULT_LIMITS: dict[str, Any] = {
    "endpoints": {
        "/api/search": {"requests": 100, "window": 60, "burst": 20, "cost": 1},
        "/api/checkout": {"requests": 10, "window": 60, "burst": 2, "cost": 5},
        "/api/profile": {"requests": 50, "window": 60, "burst": 10, "cost": 1},
    },
    "tiers": {
        "free": 1,
        "premium": 3,
        "enterprise": 10,
        UNLIMITED_TIER: math.inf,
    },
    "regions": {
        "us-east": 1.0,
        "us-west": 1.0,
        "eu-west": 0.8,
        "ap-south": 0.6,
        DEFAULT_REGION: 1.0,
    },
    "slow_start": {
        "enabled": True,
        "duration_seconds": 300,
        "start_multiplier": 0.5,
    },
}


def parse_quota_config(data: Any) -> QuotaConfig:
    """Validate raw configuration into a ``QuotaConfig``.

    Args:
        data: A ``QuotaConfig`` or a mapping with at least ``endpoints`` and ``tiers``

    Returns:
        The validated configuration

    Raises:
        ConfigRejectedError: If a required section is missing or any value is invalid
    """
    if isinstance(data, QuotaConfig):
        return data
    if not isinstance(data, Mapping):
        raise ConfigRejectedError("quota configuration must be a mapping")

    missing = [section for section in REQUIRED_SECTIONS if data.get(section) is None]
    if missing:
        raise ConfigRejectedError(f"missing required section(s): {', '.join(missing)}")

    try:
        return QuotaConfig.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigRejectedError(
            f"invalid quota configuration ({e.error_count()} error(s))"
        ) from e


def default_quota_config() -> QuotaConfig:
    """Build the built-in quota tables."""
    return parse_quota_config(DEFAULT_LIMITS)
