"""Backend selection between the shared Redis store and the local fallback.

Routing is re-evaluated on every call from the connection's health flag.
A Redis failure on a call is logged and that same call is served by the
local store; connection-level failures also flip the health flag so later
calls skip Redis until the connection owner reconnects.
"""

from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.exceptions import StoreUnavailableError
from quotaguard.app.services.redis_client import RedisConnection
from quotaguard.app.services.state_store.base import AtomicStateStore
from quotaguard.app.services.state_store.local_store import LocalStateStore
from quotaguard.app.services.state_store.models import ConsumeResult

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that mean "Redis could not serve this call"
REDIS_EXCEPTIONS = (RedisError, OSError, StoreUnavailableError)


class FailoverStateStore(AtomicStateStore):
    """State store that prefers Redis and falls back to the local store per call."""

    name = "failover"

    def __init__(
        self,
        fallback: LocalStateStore,
        primary: Optional[AtomicStateStore] = None,
        connection: Optional[RedisConnection] = None,
    ) -> None:
        """Initialize the failover store.

        Args:
            fallback: Local store used whenever Redis is not usable
            primary: Redis-backed store (None disables the shared backend)
            connection: Connection whose health flag gates routing
        """
        self._fallback = fallback
        self._primary = primary
        self._connection = connection

    @property
    def fallback(self) -> LocalStateStore:
        return self._fallback

    @property
    def primary(self) -> Optional[AtomicStateStore]:
        return self._primary

    def _use_primary(self) -> bool:
        return (
            self._primary is not None
            and self._connection is not None
            and self._connection.is_healthy()
        )

    async def _route(
        self,
        operation: str,
        key: str,
        call: Callable[[AtomicStateStore], Awaitable[T]],
    ) -> T:
        """Run ``call`` on Redis when healthy, on the local store otherwise or on failure."""
        if self._use_primary():
            try:
                return await call(self._primary)
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                self._connection.mark_unhealthy(f"{type(e).__name__}: {e}")
                logger.warning(
                    f"Redis {operation} failed for {key}: {e}. Falling back to local store.",
                    extra=get_log_context(backend="local"),
                )
            except REDIS_EXCEPTIONS as e:
                logger.warning(
                    f"Redis {operation} failed for {key}: {e}. Falling back to local store.",
                    extra=get_log_context(backend="local"),
                )
        return await call(self._fallback)

    async def check_and_consume(
        self,
        key: str,
        now: float,
        capacity: float,
        rate: float,
        cost: float,
        ttl: int,
    ) -> ConsumeResult:
        return await self._route(
            "check_and_consume",
            key,
            lambda store: store.check_and_consume(key, now, capacity, rate, cost, ttl),
        )

    async def get(self, key: str) -> str | None:
        return await self._route("get", key, lambda store: store.get(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._route("set", key, lambda store: store.set(key, value, ttl))

    async def expire(self, key: str, ttl: int) -> bool:
        return await self._route("expire", key, lambda store: store.expire(key, ttl))

    async def incr(self, key: str, ttl: int) -> int:
        return await self._route("incr", key, lambda store: store.incr(key, ttl))

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        label = keys[0] if keys else "<none>"
        return await self._route("get_many", label, lambda store: store.get_many(keys))

    async def close(self) -> None:
        """Close both backends and the Redis connection."""
        await self._fallback.close()
        if self._connection is not None:
            await self._connection.close()
