"""Rate limit decision engine.

Composes the effective bucket capacity from the active quota config and the
slow-start ramp, delegates the atomic check-and-consume to the state store,
and reports every store-backed decision to the usage recorder.
"""

import math
import time
from typing import Any, Callable, Optional

from quotaguard.app.core.config import Settings, settings as default_settings
from quotaguard.app.core.limits import (
    UNLIMITED_TIER,
    EndpointQuota,
    QuotaConfig,
    default_quota_config,
    parse_quota_config,
)
from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import ConfigRejectedError
from quotaguard.app.services.analytics import SecurityEvent, UsageRecorder, UsageStats
from quotaguard.app.services.redis_client import RedisConnection
from quotaguard.app.services.slow_start import SlowStartTracker
from quotaguard.app.services.state_store import (
    AtomicStateStore,
    FailoverStateStore,
    LocalStateStore,
    RedisStateStore,
)

from .models import Decision

logger = get_logger(__name__)


def compute_capacity(
    quota: EndpointQuota,
    tier_multiplier: float,
    region_multiplier: float,
    slow_start_multiplier: float,
) -> int:
    """Effective bucket capacity: scaled base rate plus tier-scaled burst."""
    base = math.floor(
        quota.requests * tier_multiplier * region_multiplier * slow_start_multiplier
    )
    burst = math.floor(quota.burst * tier_multiplier)
    return base + burst


class RateLimiter:
    """Admission-control engine over a token bucket per (principal, endpoint).

    Provides:
    - Unlimited-tier bypass that never touches the store
    - Fail-open for unconfigured endpoints and for any store fault
    - Atomic configuration swaps; each check reads one config snapshot
    - Usage stats and a security log through the recorder
    """

    BUCKET_KEY_PREFIX = "ratelimit"
    UNKNOWN_ENDPOINT_REMAINING = 1000

    def __init__(
        self,
        store: AtomicStateStore,
        recorder: Optional[UsageRecorder] = None,
        slow_start: Optional[SlowStartTracker] = None,
        config: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Atomic state store for buckets and slow-start records
            recorder: Usage/security recorder (built on ``store`` if omitted)
            slow_start: Slow-start tracker (built on ``store`` if omitted)
            config: Initial quota config, mapping or QuotaConfig (built-in limits if omitted)
            clock: Wall clock in seconds

        Raises:
            ConfigRejectedError: If ``config`` is invalid
        """
        self._store = store
        self._clock = clock
        self._config: QuotaConfig = (
            parse_quota_config(config) if config is not None else default_quota_config()
        )
        self._slow_start = slow_start or SlowStartTracker(store)
        self._recorder = recorder or UsageRecorder(store, clock=clock)
        self._declare_dimensions(self._config)

    @property
    def config(self) -> QuotaConfig:
        return self._config

    @property
    def store(self) -> AtomicStateStore:
        return self._store

    @property
    def recorder(self) -> UsageRecorder:
        return self._recorder

    def make_key(self, principal: str, endpoint: str) -> str:
        return f"{self.BUCKET_KEY_PREFIX}:{principal}:{endpoint}"

    def _declare_dimensions(self, config: QuotaConfig) -> None:
        self._recorder.declare_dimensions(config.endpoints, config.tiers, config.regions)

    async def check_rate_limit(
        self,
        principal: str,
        endpoint: str,
        tier: str = "free",
        region: str = "default",
        request_cost: float = 1,
    ) -> Decision:
        """Decide whether to admit one request.

        Never raises: a denial is a normal Decision, and store faults fail open.

        Args:
            principal: Caller identity the quota is charged to
            endpoint: Endpoint being called
            tier: Subscription tier
            region: Geographic region
            request_cost: Multiplier on the endpoint's configured cost

        Returns:
            Decision with allowed status, remaining tokens and retry-after
        """
        if tier == UNLIMITED_TIER:
            return Decision(
                allowed=True,
                remaining=math.inf,
                retry_after=0.0,
                limit=math.inf,
                source="unlimited",
            )

        config = self._config
        quota = config.get_endpoint(endpoint)
        if quota is None:
            return Decision(
                allowed=True,
                remaining=float(self.UNKNOWN_ENDPOINT_REMAINING),
                retry_after=0.0,
                limit=float(self.UNKNOWN_ENDPOINT_REMAINING),
                source="unconfigured",
            )

        now = self._clock()
        slow_start_multiplier = await self._slow_start.effective_multiplier(
            principal, config.slow_start, now
        )
        capacity = compute_capacity(
            quota,
            config.tier_multiplier(tier),
            config.region_multiplier(region),
            slow_start_multiplier,
        )
        if request_cost <= 0:
            request_cost = 1
        cost = quota.cost * request_cost

        try:
            result = await self._store.check_and_consume(
                self.make_key(principal, endpoint),
                now,
                capacity,
                quota.refill_rate,
                cost,
                quota.ttl_seconds,
            )
        except Exception as e:
            self._recorder.record_error(
                "rate_limit_check", e,
                principal=principal, endpoint=endpoint, tier=tier, region=region,
            )
            decision = Decision(
                allowed=True,
                remaining=float(capacity),
                retry_after=0.0,
                limit=float(capacity),
                source="fail_open",
            )
        else:
            decision = Decision(
                allowed=result.allowed,
                remaining=result.remaining,
                retry_after=result.retry_after,
                limit=float(capacity),
                source=result.source,
            )

        await self._recorder.track(principal, endpoint, tier, region, decision.allowed)
        return decision

    def update_config(self, new_config: Any) -> bool:
        """Swap the active quota tables.

        Args:
            new_config: Mapping or QuotaConfig with at least ``endpoints`` and ``tiers``

        Returns:
            True if applied; False if rejected (the previous config stays active)
        """
        try:
            parsed = parse_quota_config(new_config)
        except ConfigRejectedError as e:
            logger.warning(f"Configuration update rejected: {e.reason}")
            return False

        self._config = parsed
        self._declare_dimensions(parsed)
        logger.info(f"Configuration updated: {sorted(parsed.endpoints)}")
        return True

    async def get_stats(
        self,
        endpoint: Optional[str] = None,
        tier: Optional[str] = None,
        region: Optional[str] = None,
    ) -> UsageStats:
        return await self._recorder.get_stats(endpoint, tier, region)

    def get_security_log(self, limit: int = 100) -> list[SecurityEvent]:
        return self._recorder.get_security_log(limit)

    async def close(self) -> None:
        """Close the state store and its connections."""
        await self._store.close()


async def create_rate_limiter(
    settings: Optional[Settings] = None,
    redis_client: Optional[Any] = None,
    quota_config: Optional[Any] = None,
    clock: Optional[Callable[[], float]] = None,
    on_suspicious: Optional[Callable[[str, int], None]] = None,
    start_cleanup: bool = True,
) -> RateLimiter:
    """Build a RateLimiter with its stores, tracker and recorder.

    Redis is used when ``settings.redis_enabled`` is set or a client is
    injected. A failed initial connection is logged and the engine starts
    on the local fallback.

    Args:
        settings: Settings (module settings by default)
        redis_client: Optional pre-built Redis client
        quota_config: Initial quota tables (built-in limits by default)
        clock: Wall clock in seconds (time.time by default)
        on_suspicious: Optional alert hook for the recorder
        start_cleanup: Start the local store's expiry sweep task

    Returns:
        A ready RateLimiter; call ``close()`` on shutdown
    """
    settings = settings or default_settings
    clock = clock or time.time

    fallback = LocalStateStore(settings=settings, clock=clock)
    connection: Optional[RedisConnection] = None
    primary: Optional[RedisStateStore] = None
    if settings.redis_enabled or redis_client is not None:
        connection = RedisConnection(redis_client=redis_client, settings=settings)
        await connection.connect()
        primary = RedisStateStore(connection)
        logger.info("Using Redis state store with in-memory fallback")
    else:
        logger.debug("Using in-memory state store")

    store = FailoverStateStore(fallback, primary=primary, connection=connection)
    if start_cleanup:
        await fallback.start_cleanup_task()

    recorder = UsageRecorder(store, settings=settings, on_suspicious=on_suspicious, clock=clock)
    return RateLimiter(store, recorder=recorder, config=quota_config, clock=clock)
