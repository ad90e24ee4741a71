"""Services package for quotaguard.

This package provides:
- Atomic state stores (Redis, in-process fallback, failover routing)
- Slow-start ramp tracking
- Usage counters and security event tracking
- The rate limit decision engine
"""

from quotaguard.app.services.analytics import SecurityEvent, UsageRecorder, UsageStats
from quotaguard.app.services.rate_limiter import (
    Decision,
    RateLimiter,
    compute_capacity,
    create_rate_limiter,
)
from quotaguard.app.services.redis_client import RedisConnection
from quotaguard.app.services.slow_start import SlowStartTracker, ramp_multiplier
from quotaguard.app.services.state_store import (
    AtomicStateStore,
    BucketState,
    ConsumeResult,
    FailoverStateStore,
    KeyedLock,
    LocalStateStore,
    RedisStateStore,
    refill_and_consume,
)

__all__ = [
    "SecurityEvent",
    "UsageRecorder",
    "UsageStats",
    "Decision",
    "RateLimiter",
    "compute_capacity",
    "create_rate_limiter",
    "RedisConnection",
    "SlowStartTracker",
    "ramp_multiplier",
    "AtomicStateStore",
    "BucketState",
    "ConsumeResult",
    "FailoverStateStore",
    "KeyedLock",
    "LocalStateStore",
    "RedisStateStore",
    "refill_and_consume",
]
