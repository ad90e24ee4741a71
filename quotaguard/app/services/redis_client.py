"""Redis connection owner for the shared state store.

Holds the client and a single health flag. The state store reads the flag
once per call to choose between Redis and the local fallback; this module
never schedules reconnects on its own, callers decide when to ``connect()``
again.
"""

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from quotaguard.app.core.config import Settings, settings as default_settings
from quotaguard.app.core.logging import get_logger

logger = get_logger(__name__)


class RedisConnection:
    """Owns the Redis client and reports whether it is usable."""

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize the connection holder.

        Args:
            redis_client: Optional pre-built client (tests inject fakes here)
            redis_url: Redis connection URL (defaults to settings.redis_url)
            settings: Settings for URL and socket timeout
        """
        self._settings = settings or default_settings
        self._redis = redis_client
        self._redis_url = redis_url or self._settings.redis_url
        self._healthy = False

    @property
    def client(self) -> Optional[Any]:
        return self._redis

    async def connect(self) -> bool:
        """Create the client if needed and verify it with PING.

        Connection errors are logged and leave the connection unhealthy;
        they are never raised.

        Returns:
            True if Redis answered
        """
        try:
            if self._redis is None:
                self._redis = aioredis.from_url(
                    self._redis_url,
                    socket_timeout=self._settings.redis_socket_timeout,
                    socket_connect_timeout=self._settings.redis_socket_timeout,
                )
            await self._redis.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis unavailable: {e}. Using in-memory fallback.")
            self._healthy = False
            return False
        self._healthy = True
        logger.info("Redis connected")
        return True

    def is_healthy(self) -> bool:
        """Whether calls should be routed to Redis. No side effects."""
        return self._healthy and self._redis is not None

    def mark_unhealthy(self, reason: str = "") -> None:
        """Flip routing to the local fallback until the next successful connect()."""
        if self._healthy:
            logger.error(f"Redis marked unhealthy: {reason or 'unknown error'}")
        self._healthy = False

    async def close(self) -> None:
        """Close the Redis connection."""
        self._healthy = False
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
