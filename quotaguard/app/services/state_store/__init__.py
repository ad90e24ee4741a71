"""Atomic state stores for token buckets, slow-start records and usage counters.

This package provides a Redis-backed store (atomic via a Lua script), an
in-process fallback with per-key locking, and a failover store that routes
each call between them based on Redis health.
"""

from .base import AtomicStateStore
from .failover import FailoverStateStore
from .local_store import LocalStateStore
from .locks import KeyedLock
from .models import BucketState, ConsumeResult, refill_and_consume
from .redis_lua import TOKEN_BUCKET_SCRIPT
from .redis_store import RedisStateStore

__all__ = [
    "AtomicStateStore",
    "BucketState",
    "ConsumeResult",
    "refill_and_consume",
    "KeyedLock",
    "LocalStateStore",
    "RedisStateStore",
    "FailoverStateStore",
    "TOKEN_BUCKET_SCRIPT",
]
