from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Quota tables (endpoints, tiers, regions, slow-start) are not settings;
    they live in ``quotaguard.app.core.limits`` and are swapped at runtime
    through ``RateLimiter.update_config``.
    """

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional, shared backend)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 0.5  # Bounds every round trip to the shared store

    # Local fallback settings
    fallback_lock_timeout_seconds: float = 0.5  # Max wait for a per-key lock
    fallback_lock_lease_seconds: float = 5.0  # A holder older than this can be reclaimed
    fallback_cleanup_interval_seconds: int = 60  # Expiry sweep period

    # Usage / security recorder settings
    analytics_counter_ttl_seconds: int = 3600
    security_log_size: int = 1000
    suspicious_denial_threshold: int = 10
    suspicious_window_seconds: int = 60
    max_tracked_dimensions: int = 10000

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is one of the supported formatters."""
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @field_validator(
        "redis_socket_timeout",
        "fallback_lock_timeout_seconds",
        "fallback_lock_lease_seconds",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator(
        "fallback_cleanup_interval_seconds",
        "analytics_counter_ttl_seconds",
        "security_log_size",
        "suspicious_window_seconds",
        "max_tracked_dimensions",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate sizes and intervals are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("suspicious_denial_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Validate the suspicious-activity threshold is not negative."""
        if v < 0:
            raise ValueError("suspicious_denial_threshold must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
