"""Data models for admission decisions."""

import math
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Decision:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request is admitted
        remaining: Tokens left after this request (inf for the unlimited tier)
        retry_after: Seconds the caller should wait before retrying (0 when allowed)
        limit: Effective bucket capacity used for this check
        source: Path that produced the decision
            ('redis', 'local', 'unlimited', 'unconfigured' or 'fail_open')
    """
    allowed: bool
    remaining: float
    retry_after: float = field(default=0.0)
    limit: float = field(default=0.0)
    source: str = field(default="local")

    @property
    def unlimited(self) -> bool:
        return math.isinf(self.remaining)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
            "limit": self.limit,
            "source": self.source,
        }
