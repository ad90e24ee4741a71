"""Tests for the in-process fallback state store."""

import asyncio
import threading

import pytest

from quotaguard.app.exceptions import LockTimeoutError
from quotaguard.app.services.state_store import LocalStateStore


class TestLocalCheckAndConsume:
    """Test token bucket consumption on the local store."""

    @pytest.mark.asyncio
    async def test_new_bucket_starts_full(self, local_store, clock):
        result = await local_store.check_and_consume("b", clock(), 12, 10 / 60, 5, 120)
        assert result.allowed is True
        assert result.remaining == 7
        assert result.retry_after == 0
        assert result.source == "local"

    @pytest.mark.asyncio
    async def test_denied_once_exhausted(self, local_store, clock):
        now = clock()
        for _ in range(2):
            assert (await local_store.check_and_consume("b", now, 12, 10 / 60, 5, 120)).allowed
        result = await local_store.check_and_consume("b", now, 12, 10 / 60, 5, 120)
        assert result.allowed is False
        assert result.remaining == 2
        assert result.retry_after == 18

    @pytest.mark.asyncio
    async def test_bucket_expires_after_ttl(self, local_store, clock):
        """An idle bucket past its TTL is forgotten and starts full again."""
        now = clock()
        await local_store.check_and_consume("b", now, 5, 0.001, 5, 10)
        denied = await local_store.check_and_consume("b", now + 1, 5, 0.001, 5, 10)
        assert denied.allowed is False

        result = await local_store.check_and_consume("b", now + 30, 5, 0.001, 5, 10)
        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_lock_timeout_propagates(self, local_store, clock):
        with local_store.locks.hold("b"):
            with pytest.raises(LockTimeoutError):
                await local_store.check_and_consume("b", clock(), 5, 1.0, 1, 10)

    def test_concurrent_threads_never_overadmit(self, clock, test_settings):
        """N threads racing on one bucket of capacity C admit at most C."""
        store = LocalStateStore(settings=test_settings, lock_timeout=5.0, clock=clock)
        now = clock()
        admitted = []
        admitted_lock = threading.Lock()

        def worker():
            async def run():
                count = 0
                for _ in range(10):
                    result = await store.check_and_consume("shared", now, 25, 1.0, 1, 120)
                    count += int(result.allowed)
                return count

            count = asyncio.run(run())
            with admitted_lock:
                admitted.append(count)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(admitted) == 25


class TestLocalPrimitives:
    """Test get/set/expire/incr/get_many."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, local_store):
        await local_store.set("k", "v", 60)
        assert await local_store.get("k") == "v"
        assert await local_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_value_expires(self, local_store, clock):
        await local_store.set("k", "v", 10)
        clock.advance(11)
        assert await local_store.get("k") is None
        assert len(local_store) == 0

    @pytest.mark.asyncio
    async def test_expire_extends_ttl(self, local_store, clock):
        await local_store.set("k", "v", 10)
        clock.advance(8)
        assert await local_store.expire("k", 10) is True
        clock.advance(8)
        assert await local_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_expire_missing_key(self, local_store):
        assert await local_store.expire("missing", 10) is False

    @pytest.mark.asyncio
    async def test_incr(self, local_store, clock):
        assert await local_store.incr("c", 60) == 1
        assert await local_store.incr("c", 60) == 2
        assert await local_store.get("c") == "2"
        clock.advance(61)
        assert await local_store.incr("c", 60) == 1

    @pytest.mark.asyncio
    async def test_get_many(self, local_store):
        await local_store.set("a", "1", 60)
        await local_store.incr("b", 60)
        assert await local_store.get_many(["a", "missing", "b"]) == ["1", None, "1"]

    @pytest.mark.asyncio
    async def test_get_ignores_bucket_entries(self, local_store, clock):
        await local_store.check_and_consume("bucket", clock(), 5, 1.0, 1, 60)
        assert await local_store.get("bucket") is None


class TestLocalCleanup:
    """Test expiry sweeps."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired(self, local_store, clock):
        await local_store.set("short", "v", 5)
        await local_store.set("long", "v", 100)
        clock.advance(10)
        assert local_store.cleanup() == 1
        assert len(local_store) == 1
        assert await local_store.get("long") == "v"

    @pytest.mark.asyncio
    async def test_cleanup_skips_locked_keys(self, local_store, clock):
        await local_store.set("busy", "v", 5)
        clock.advance(10)
        with local_store.locks.hold("busy"):
            assert local_store.cleanup() == 0
        assert local_store.cleanup() == 1

    @pytest.mark.asyncio
    async def test_cleanup_task_lifecycle(self, clock, test_settings):
        store = LocalStateStore(settings=test_settings, cleanup_interval=0.01, clock=clock)
        await store.set("k", "v", 1)
        clock.advance(5)
        await store.start_cleanup_task()
        await asyncio.sleep(0.1)
        assert len(store) == 0
        await store.stop_cleanup_task()
        assert store._cleanup_task is None

    @pytest.mark.asyncio
    async def test_close_clears_entries(self, local_store):
        await local_store.set("k", "v", 60)
        await local_store.close()
        assert len(local_store) == 0
