"""Slow-start ramp for newly observed principals.

A principal's first check records ``slowstart:<principal> = now`` and gets
``start_multiplier`` of its base capacity; the multiplier then climbs
linearly to 1.0 over ``duration_seconds``.

Two first checks racing for the same new principal both write, and the last
write wins. The ramp may start a moment later than the true first sighting,
but the multiplier always stays within [start_multiplier, 1.0].
"""

from quotaguard.app.core.limits import SlowStartConfig
from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.services.state_store.base import AtomicStateStore

logger = get_logger(__name__)


class SlowStartTracker:
    """Derives each principal's capacity multiplier from its first-seen time."""

    KEY_PREFIX = "slowstart"

    def __init__(self, store: AtomicStateStore) -> None:
        self._store = store

    def make_key(self, principal: str) -> str:
        return f"{self.KEY_PREFIX}:{principal}"

    async def effective_multiplier(
        self,
        principal: str,
        slow_start: SlowStartConfig,
        now: float,
    ) -> float:
        """Get the ramp multiplier for ``principal`` at ``now``.

        The record's expiry is pushed out on every lookup, so only a
        principal idle for a whole ramp duration starts over.

        Args:
            principal: Caller identity
            slow_start: Active slow-start parameters
            now: Current time in seconds

        Returns:
            Multiplier in [start_multiplier, 1.0]; 1.0 when disabled or on store errors
        """
        if not slow_start.enabled:
            return 1.0

        key = self.make_key(principal)
        duration = slow_start.duration_seconds
        try:
            first_seen_raw = await self._store.get(key)
            if first_seen_raw is None:
                await self._store.set(key, repr(float(now)), duration)
                return slow_start.start_multiplier

            await self._store.expire(key, duration)
            first_seen = float(first_seen_raw)
        except Exception as e:
            logger.error(
                f"Slow-start lookup failed: {e}",
                extra=get_log_context(principal=principal),
            )
            return 1.0

        return ramp_multiplier(slow_start, max(0.0, now - first_seen))


def ramp_multiplier(slow_start: SlowStartConfig, elapsed: float) -> float:
    """Linear ramp from start_multiplier at 0s to 1.0 at duration_seconds."""
    if elapsed >= slow_start.duration_seconds:
        return 1.0
    progress = elapsed / slow_start.duration_seconds
    return slow_start.start_multiplier + progress * (1.0 - slow_start.start_multiplier)
