"""Usage counters and security event tracking for admission decisions.

Counters are best effort: they go through the same failover store as the
buckets but a failed increment is only logged. Stats are read back from a
known set of counter keys (dimensions declared from the quota config plus
dimensions seen in ``track``) instead of scanning the keyspace.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, Optional

from quotaguard.app.core.config import Settings, settings as default_settings
from quotaguard.app.core.limits import UNLIMITED_TIER
from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.services.state_store.base import AtomicStateStore

logger = get_logger(__name__)

Dimension = tuple[str, str, str]


@dataclass(frozen=True)
class SecurityEvent:
    """A denied admission, kept in the bounded security log."""
    principal: str
    endpoint: str
    timestamp: float
    reason: str = field(default="rate_limit_exceeded")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UsageStats:
    """Aggregated allowed/blocked counts."""
    allowed: int = 0
    blocked: int = 0

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "blocked": self.blocked}


class UsageRecorder:
    """Counts decisions by (endpoint, tier, region) and flags abusive principals.

    Redis key format:
    - analytics:{endpoint}:{tier}:{region}:allowed
    - analytics:{endpoint}:{tier}:{region}:blocked
    """

    KEY_PREFIX = "analytics"
    DENIAL_REASON = "rate_limit_exceeded"

    def __init__(
        self,
        store: AtomicStateStore,
        settings: Optional[Settings] = None,
        on_suspicious: Optional[Callable[[str, int], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the recorder.

        Args:
            store: State store holding the counters
            settings: Settings for TTLs, log size and suspicious-activity thresholds
            on_suspicious: Optional alert hook called with (principal, recent_denials)
            clock: Wall clock for security event timestamps
        """
        self._store = store
        self._settings = settings or default_settings
        self._on_suspicious = on_suspicious
        self._clock = clock

        self._security_log: deque[SecurityEvent] = deque(maxlen=self._settings.security_log_size)
        self._log_lock = threading.Lock()

        self._declared: set[Dimension] = set()
        self._observed: set[Dimension] = set()
        self._dimension_lock = threading.Lock()

        self._errors: dict[str, int] = defaultdict(int)
        self._errors_lock = threading.Lock()

    def make_key(self, endpoint: str, tier: str, region: str, allowed: bool) -> str:
        outcome = "allowed" if allowed else "blocked"
        return f"{self.KEY_PREFIX}:{endpoint}:{tier}:{region}:{outcome}"

    def declare_dimensions(
        self,
        endpoints: Iterable[str],
        tiers: Iterable[str],
        regions: Iterable[str],
    ) -> None:
        """Replace the declared counter set with the cross product of the given names.

        The unlimited tier never reaches the recorder and is left out.
        """
        tiers = [t for t in tiers if t != UNLIMITED_TIER]
        regions = list(regions)
        declared = {
            (endpoint, tier, region)
            for endpoint in endpoints
            for tier in tiers
            for region in regions
        }
        with self._dimension_lock:
            self._declared = declared

    def _observe(self, dimension: Dimension) -> None:
        with self._dimension_lock:
            if dimension in self._declared or dimension in self._observed:
                return
            if len(self._observed) >= self._settings.max_tracked_dimensions:
                return
            self._observed.add(dimension)

    def dimensions(self) -> set[Dimension]:
        with self._dimension_lock:
            return self._declared | self._observed

    async def track(
        self,
        principal: str,
        endpoint: str,
        tier: str,
        region: str,
        allowed: bool,
    ) -> None:
        """Record one decision. Never raises."""
        self._observe((endpoint, tier, region))
        key = self.make_key(endpoint, tier, region, allowed)
        try:
            await self._store.incr(key, self._settings.analytics_counter_ttl_seconds)
        except Exception as e:
            logger.error(
                f"Analytics tracking error: {e}",
                extra=get_log_context(principal=principal, endpoint=endpoint, tier=tier, region=region),
            )

        if not allowed:
            self.log_security_event(principal, endpoint, self._clock())

    def log_security_event(
        self,
        principal: str,
        endpoint: str,
        timestamp: float,
        reason: str = DENIAL_REASON,
    ) -> int:
        """Append a denial to the security log and check for suspicious activity.

        Returns:
            Number of this principal's denials within the trailing window
        """
        window = self._settings.suspicious_window_seconds
        with self._log_lock:
            self._security_log.append(
                SecurityEvent(principal=principal, endpoint=endpoint, timestamp=timestamp, reason=reason)
            )
            recent = sum(
                1 for event in self._security_log
                if event.principal == principal and timestamp - event.timestamp < window
            )

        if recent > self._settings.suspicious_denial_threshold:
            logger.warning(
                f"Suspicious activity detected for {principal}: "
                f"{recent} rate limit hits in {window}s",
                extra=get_log_context(principal=principal, endpoint=endpoint),
            )
            if self._on_suspicious is not None:
                try:
                    self._on_suspicious(principal, recent)
                except Exception as e:
                    logger.error(f"Suspicious-activity hook failed: {e}")
        return recent

    def record_error(self, source: str, error: BaseException, **context) -> None:
        """Error channel for faults the engine converted into fail-open decisions.

        Args:
            source: Operation that failed
            error: The exception
            **context: Log context (principal, endpoint, ...)
        """
        error_type = type(error).__name__
        with self._errors_lock:
            self._errors[error_type] += 1
        logger.error(
            f"{source} failed open ({error_type}): {error}",
            extra=get_log_context(**context),
        )

    @property
    def error_counts(self) -> dict[str, int]:
        with self._errors_lock:
            return dict(self._errors)

    async def get_stats(
        self,
        endpoint: Optional[str] = None,
        tier: Optional[str] = None,
        region: Optional[str] = None,
    ) -> UsageStats:
        """Sum allowed/blocked counters matching the filters (None matches all)."""
        matching = [
            (e, t, r) for (e, t, r) in sorted(self.dimensions())
            if (endpoint is None or e == endpoint)
            and (tier is None or t == tier)
            and (region is None or r == region)
        ]
        stats = UsageStats()
        if not matching:
            return stats

        keys = []
        for e, t, r in matching:
            keys.append(self.make_key(e, t, r, True))
            keys.append(self.make_key(e, t, r, False))

        try:
            values = await self._store.get_many(keys)
        except Exception as e:
            logger.error(f"Error fetching stats: {e}")
            return stats

        for i, value in enumerate(values):
            if value is None:
                continue
            if i % 2 == 0:
                stats.allowed += int(value)
            else:
                stats.blocked += int(value)
        return stats

    def get_security_log(self, limit: int = 100) -> list[SecurityEvent]:
        """Most recent ``limit`` security events, newest last."""
        if limit <= 0:
            return []
        with self._log_lock:
            events = list(self._security_log)
        return events[-limit:]
