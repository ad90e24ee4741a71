"""Atomic state store interface."""

from abc import ABC, abstractmethod
from typing import Sequence

from quotaguard.app.services.state_store.models import ConsumeResult


class AtomicStateStore(ABC):
    """Abstract base class for state store backends.

    The central operation is ``check_and_consume``: one indivisible
    read-refill-consume-write of a token bucket. For a fixed key, concurrent
    calls are linearized; calls for different keys are independent.

    The plain primitives (``get``/``set``/``expire``/``incr``/``get_many``)
    back the slow-start records and usage counters. They carry no
    cross-call atomicity guarantee.
    """

    #: Short backend name used in logs and decisions
    name: str = "abstract"

    @abstractmethod
    async def check_and_consume(
        self,
        key: str,
        now: float,
        capacity: float,
        rate: float,
        cost: float,
        ttl: int,
    ) -> ConsumeResult:
        """Atomically refill the bucket at ``key`` and try to take ``cost`` tokens.

        Args:
            key: Bucket key (``ratelimit:<principal>:<endpoint>``)
            now: Current time in seconds
            capacity: Bucket capacity including burst
            rate: Refill rate in tokens per second
            cost: Tokens this request needs
            ttl: Seconds of inactivity after which the bucket is dropped

        Returns:
            ConsumeResult with allowed status, remaining tokens and retry-after
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a plain string value, or None if missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        """Set a plain string value with a TTL in seconds."""
        pass

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        """Reset the TTL of an existing key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def incr(self, key: str, ttl: int) -> int:
        """Increment an integer counter, (re)arming its TTL.

        Returns:
            The counter value after the increment
        """
        pass

    @abstractmethod
    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        """Get several plain values at once, None for missing keys."""
        pass

    async def close(self) -> None:
        """Release resources held by the backend."""
        return None
