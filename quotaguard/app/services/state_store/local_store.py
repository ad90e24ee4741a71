"""In-process fallback state store.

Used whenever Redis is disabled, unhealthy, or fails on a call. Bucket
updates run the same arithmetic as the Lua script inside a per-key lock,
so the store stays linearizable per key under threads as well as under a
single event loop. Expired entries are dropped lazily on access and by a
periodic sweep.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from quotaguard.app.core.config import Settings, settings as default_settings
from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import LockTimeoutError
from quotaguard.app.services.state_store.base import AtomicStateStore
from quotaguard.app.services.state_store.locks import KeyedLock
from quotaguard.app.services.state_store.models import BucketState, ConsumeResult, refill_and_consume

logger = get_logger(__name__)


@dataclass
class _Entry:
    """Internal store entry with TTL tracking."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired at ``now``."""
        if self.expires_at is None:
            return False
        return now > self.expires_at


class LocalStateStore(AtomicStateStore):
    """Thread-safe in-memory state store with per-key locking and TTL expiry.

    Note: This store is not distributed and data is lost when the process
    restarts. Two processes falling back at the same time each enforce
    their own buckets.
    """

    name = "local"

    def __init__(
        self,
        lock_timeout: Optional[float] = None,
        lock_lease: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize the local store.

        Args:
            lock_timeout: Max seconds to wait for a key (default from settings)
            lock_lease: Seconds after which a stuck holder is reclaimed (default from settings)
            cleanup_interval: Seconds between expiry sweeps (default from settings)
            clock: Wall clock used for expiry of plain values and sweeps
            settings: Settings to read defaults from
        """
        settings = settings or default_settings
        self._locks = KeyedLock(
            timeout=lock_timeout if lock_timeout is not None else settings.fallback_lock_timeout_seconds,
            lease=lock_lease if lock_lease is not None else settings.fallback_lock_lease_seconds,
        )
        self._cleanup_interval = (
            cleanup_interval if cleanup_interval is not None
            else settings.fallback_cleanup_interval_seconds
        )
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._data_lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._data)

    def _read(self, key: str, now: float) -> Any:
        """Return the live value at ``key``, dropping it if expired."""
        with self._data_lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._data[key]
                return None
            return entry.value

    def _write(self, key: str, value: Any, expires_at: float | None) -> None:
        with self._data_lock:
            self._data[key] = _Entry(value=value, expires_at=expires_at)

    async def check_and_consume(
        self,
        key: str,
        now: float,
        capacity: float,
        rate: float,
        cost: float,
        ttl: int,
    ) -> ConsumeResult:
        """Check and consume tokens under the key's lock.

        Raises:
            LockTimeoutError: If the key stayed locked past the lock timeout
        """
        with self._locks.hold(key):
            stored = self._read(key, now)
            state = stored if isinstance(stored, BucketState) else None
            new_state, allowed, retry_after = refill_and_consume(state, now, capacity, rate, cost)
            self._write(key, new_state, now + ttl)
        return ConsumeResult(
            allowed=allowed,
            remaining=new_state.tokens,
            retry_after=retry_after,
            source=self.name,
        )

    async def get(self, key: str) -> str | None:
        value = self._read(key, self._clock())
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        with self._locks.hold(key):
            self._write(key, value, self._clock() + ttl)

    async def expire(self, key: str, ttl: int) -> bool:
        with self._locks.hold(key):
            now = self._clock()
            value = self._read(key, now)
            if value is None:
                return False
            self._write(key, value, now + ttl)
            return True

    async def incr(self, key: str, ttl: int) -> int:
        with self._locks.hold(key):
            now = self._clock()
            current = self._read(key, now)
            new_value = (int(current) if isinstance(current, str) else 0) + 1
            self._write(key, str(new_value), now + ttl)
            return new_value

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        now = self._clock()
        values = []
        for key in keys:
            value = self._read(key, now)
            values.append(value if isinstance(value, str) else None)
        return values

    def cleanup(self) -> int:
        """Remove all expired entries from the store.

        Keys whose lock is currently held are skipped: their holder is about
        to rewrite them.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._data_lock:
            expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]

        removed = 0
        for key in expired_keys:
            try:
                with self._locks.hold(key, timeout=0):
                    with self._data_lock:
                        entry = self._data.get(key)
                        if entry is not None and entry.is_expired(now):
                            del self._data[key]
                            removed += 1
            except LockTimeoutError:
                continue
        if removed:
            logger.debug(f"Expired {removed} local state entries")
        return removed

    async def start_cleanup_task(self) -> None:
        """Start the periodic expiry sweep."""
        if self._cleanup_task is not None:
            return
        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Started local state store cleanup task")

    async def stop_cleanup_task(self) -> None:
        """Stop the periodic expiry sweep."""
        if self._cleanup_task is None:
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._cleanup_task, timeout=5.0)
        except asyncio.TimeoutError:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        logger.info("Stopped local state store cleanup task")

    async def _cleanup_loop(self) -> None:
        """Background loop for periodic expiry."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._cleanup_interval,
                )
            except asyncio.TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Error during local state cleanup: {e}")

    async def close(self) -> None:
        """Stop the sweep and drop all entries."""
        await self.stop_cleanup_task()
        with self._data_lock:
            self._data.clear()
