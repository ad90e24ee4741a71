"""quotaguard: rate-limit admission control with a Redis-backed token bucket."""

__version__ = "0.1.0"
