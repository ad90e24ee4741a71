"""Shared state store backed by Redis.

Bucket updates run inside ``TOKEN_BUCKET_SCRIPT`` so that the whole
read-refill-consume-write sequence is a single atomic Redis operation.

Redis key format:
- ratelimit:{principal}:{endpoint} - Bucket hash (tokens, last_refill)
- slowstart:{principal} - First-seen timestamp
- analytics:{endpoint}:{tier}:{region}:{allowed|blocked} - Usage counters
"""

import math
from typing import Any, Sequence

from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import StoreUnavailableError
from quotaguard.app.services.redis_client import RedisConnection
from quotaguard.app.services.state_store.base import AtomicStateStore
from quotaguard.app.services.state_store.models import ConsumeResult
from quotaguard.app.services.state_store.redis_lua import TOKEN_BUCKET_SCRIPT

logger = get_logger(__name__)


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode()
    return value


def _format_number(value: float) -> str:
    """Render a number for a Lua ARGV slot without losing precision."""
    return repr(float(value))


def _ttl_seconds(ttl: float) -> int:
    return max(1, int(math.ceil(ttl)))


class RedisStateStore(AtomicStateStore):
    """Atomic state store using a Redis Lua script for check-and-consume."""

    name = "redis"

    def __init__(self, connection: RedisConnection) -> None:
        """Initialize the Redis store.

        Args:
            connection: Connection holder that owns the Redis client
        """
        self._connection = connection

    def _get_redis(self) -> Any:
        """Get the Redis client or fail with StoreUnavailableError."""
        client = self._connection.client
        if client is None:
            raise StoreUnavailableError("Redis client not initialized")
        return client

    async def check_and_consume(
        self,
        key: str,
        now: float,
        capacity: float,
        rate: float,
        cost: float,
        ttl: int,
    ) -> ConsumeResult:
        """Check and consume tokens using the Redis Lua script for atomicity."""
        redis = self._get_redis()
        result = await redis.eval(
            TOKEN_BUCKET_SCRIPT,
            1,  # Number of keys
            key,  # KEYS[1]
            _format_number(now),  # ARGV[1]
            _format_number(capacity),  # ARGV[2]
            _format_number(rate),  # ARGV[3]
            _format_number(cost),  # ARGV[4]
            _ttl_seconds(ttl),  # ARGV[5]
        )
        return ConsumeResult(
            allowed=int(result[0]) == 1,
            remaining=float(_decode(result[1])),
            retry_after=float(_decode(result[2])),
            source=self.name,
        )

    async def get(self, key: str) -> str | None:
        redis = self._get_redis()
        return _decode(await redis.get(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        redis = self._get_redis()
        await redis.setex(key, _ttl_seconds(ttl), value)

    async def expire(self, key: str, ttl: int) -> bool:
        redis = self._get_redis()
        return bool(await redis.expire(key, _ttl_seconds(ttl)))

    async def incr(self, key: str, ttl: int) -> int:
        """Increment a counter and re-arm its TTL in one MULTI/EXEC round trip."""
        redis = self._get_redis()
        pipe = redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, _ttl_seconds(ttl))
        results = await pipe.execute()
        return int(results[0])

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        if not keys:
            return []
        redis = self._get_redis()
        values = await redis.mget(list(keys))
        return [_decode(v) for v in values]
