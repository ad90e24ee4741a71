"""Tests for the per-key lock used by the local fallback."""

import threading
import time

import pytest

from quotaguard.app.exceptions import LockTimeoutError
from quotaguard.app.services.state_store import KeyedLock


class TestKeyedLock:
    """Test KeyedLock."""

    def test_hold_and_release(self):
        locks = KeyedLock(timeout=0.1)
        with locks.hold("a"):
            assert locks.is_held("a")
        assert not locks.is_held("a")

    def test_released_on_exception(self):
        """The key is released even when the block raises."""
        locks = KeyedLock(timeout=0.1)
        with pytest.raises(ValueError):
            with locks.hold("a"):
                raise ValueError("boom")
        assert not locks.is_held("a")

    def test_timeout_when_key_is_held(self):
        """A second holder gives up with LockTimeoutError after the timeout."""
        locks = KeyedLock(timeout=0.05, lease=10.0)
        with locks.hold("a"):
            start = time.monotonic()
            with pytest.raises(LockTimeoutError) as exc_info:
                with locks.hold("a"):
                    pass
            assert time.monotonic() - start < 1.0
        assert exc_info.value.key == "a"

    def test_zero_timeout_fails_immediately_on_held_key(self):
        locks = KeyedLock(timeout=1.0, lease=10.0)
        with locks.hold("a"):
            with pytest.raises(LockTimeoutError):
                with locks.hold("a", timeout=0):
                    pass

    def test_different_keys_do_not_block(self):
        locks = KeyedLock(timeout=0.05)
        with locks.hold("a"):
            with locks.hold("b"):
                assert locks.is_held("a") and locks.is_held("b")

    def test_expired_lease_is_reclaimed(self):
        """A holder past its lease no longer blocks waiters."""
        now = [0.0]
        locks = KeyedLock(timeout=1.0, lease=2.0, clock=lambda: now[0])
        stale = locks._acquire("a", timeout=1.0)
        now[0] = 3.0
        with locks.hold("a"):
            assert locks.is_held("a")
            # The stale owner's late release must not free the new holder's key
            locks._release("a", stale)
            assert locks.is_held("a")
        assert not locks.is_held("a")

    def test_waiter_wakes_on_release(self):
        """A waiter acquires as soon as the holder releases, well before its timeout."""
        locks = KeyedLock(timeout=5.0, lease=10.0)
        acquired = threading.Event()
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("a"):
                holding.set()
                release.wait(2.0)

        def waiter():
            with locks.hold("a"):
                acquired.set()

        t1 = threading.Thread(target=holder)
        t1.start()
        holding.wait(2.0)
        t2 = threading.Thread(target=waiter)
        t2.start()
        time.sleep(0.05)
        assert not acquired.is_set()
        release.set()
        assert acquired.wait(2.0)
        t1.join()
        t2.join()

    def test_mutual_exclusion_under_threads(self):
        """Unsynchronized read-modify-write inside hold() never loses updates."""
        locks = KeyedLock(timeout=5.0)
        counter = {"value": 0}

        def work():
            for _ in range(200):
                with locks.hold("counter"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 1600
