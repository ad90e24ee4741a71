"""Per-key mutual exclusion for the local fallback store.

Waiters block on a condition variable rather than polling. Every wait is
bounded by a timeout, and a holder that keeps a key longer than its lease
is assumed dead: the next waiter reclaims the key instead of waiting out
the full timeout.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import LockTimeoutError

logger = get_logger(__name__)


@dataclass
class _Lease:
    """Ownership record for one held key."""
    owner: object
    acquired_at: float


class KeyedLock:
    """Mutual exclusion per key, safe across threads and event loops.

    Only keys that are currently held occupy memory. Locks on different
    keys never wait for each other beyond the short bookkeeping section
    guarded by the shared condition.
    """

    def __init__(
        self,
        timeout: float = 0.5,
        lease: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the lock table.

        Args:
            timeout: Default seconds to wait for a key before giving up
            lease: Seconds after which a held key may be reclaimed
            clock: Monotonic clock used for timeouts and leases
        """
        self.timeout = timeout
        self.lease = lease
        self._clock = clock
        self._cond = threading.Condition()
        self._leases: dict[str, _Lease] = {}

    def _acquire(self, key: str, timeout: float) -> object:
        owner = object()
        deadline = self._clock() + timeout
        with self._cond:
            while True:
                now = self._clock()
                lease = self._leases.get(key)
                if lease is None:
                    break
                lease_expires = lease.acquired_at + self.lease
                if now >= lease_expires:
                    logger.warning(f"Reclaiming lock on {key} after lease of {self.lease}s expired")
                    break
                remaining = deadline - now
                if remaining <= 0:
                    raise LockTimeoutError(key, timeout)
                self._cond.wait(min(remaining, lease_expires - now))
            self._leases[key] = _Lease(owner=owner, acquired_at=now)
        return owner

    def _release(self, key: str, owner: object) -> None:
        with self._cond:
            lease = self._leases.get(key)
            # A reclaimed lease belongs to someone else now
            if lease is not None and lease.owner is owner:
                del self._leases[key]
            self._cond.notify_all()

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold ``key`` for the duration of the block.

        Args:
            key: Key to lock
            timeout: Seconds to wait (defaults to the table timeout)

        Raises:
            LockTimeoutError: If the key could not be acquired in time
        """
        owner = self._acquire(key, self.timeout if timeout is None else timeout)
        try:
            yield
        finally:
            self._release(key, owner)

    def is_held(self, key: str) -> bool:
        with self._cond:
            return key in self._leases
