"""Data models and token-bucket arithmetic shared by every state store backend.

``refill_and_consume`` is the Python twin of ``TOKEN_BUCKET_SCRIPT``. The
two must perform the same floating-point operations in the same order so
that a key served by Redis and then by the local fallback (or the other
way round) sees identical token counts.
"""

import math
from dataclasses import dataclass, field


@dataclass
class BucketState:
    """Token bucket state for one ``(principal, endpoint)`` key.

    Attributes:
        tokens: Tokens currently in the bucket (0 <= tokens <= capacity)
        last_refill: Wall-clock seconds of the last refill; never moves backwards
    """
    tokens: float
    last_refill: float


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of one check-and-consume call.

    Attributes:
        allowed: Whether the cost was taken from the bucket
        remaining: Tokens left in the bucket after the call
        retry_after: Seconds until the cost would fit (0 when allowed)
        source: Backend that produced the result ('redis' or 'local')
    """
    allowed: bool
    remaining: float
    retry_after: float = field(default=0.0)
    source: str = field(default="local")


def refill_and_consume(
    state: BucketState | None,
    now: float,
    capacity: float,
    rate: float,
    cost: float,
) -> tuple[BucketState, bool, float]:
    """Refill a bucket up to ``now`` and try to take ``cost`` tokens from it.

    A missing state starts full. Elapsed time is clamped at zero so a clock
    that moves backwards neither drains the bucket nor rewinds
    ``last_refill``.

    Args:
        state: Stored state, or None on first observation
        now: Current time in seconds
        capacity: Bucket capacity (including burst)
        rate: Refill rate in tokens per second
        cost: Tokens this request needs

    Returns:
        (new_state, allowed, retry_after)
    """
    capacity = float(capacity)
    cost = float(cost)
    if state is None:
        tokens = capacity
        last_refill = now
    else:
        tokens = state.tokens
        last_refill = state.last_refill

    elapsed = max(0.0, now - last_refill)
    tokens = min(capacity, tokens + elapsed * rate)

    allowed = False
    retry_after = 0.0
    if tokens >= cost:
        tokens = tokens - cost
        allowed = True
    else:
        retry_after = float(math.ceil((cost - tokens) / rate))

    return BucketState(tokens=tokens, last_refill=max(last_refill, now)), allowed, retry_after
