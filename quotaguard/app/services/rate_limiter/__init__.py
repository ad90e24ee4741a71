"""Rate limit decision engine."""

from .models import Decision
from .service import RateLimiter, compute_capacity, create_rate_limiter

__all__ = [
    "Decision",
    "RateLimiter",
    "compute_capacity",
    "create_rate_limiter",
]
