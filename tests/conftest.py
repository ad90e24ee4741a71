"""Shared fixtures: a controllable clock and a dict-backed fake Redis client."""

import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from quotaguard.app.core.config import Settings
from quotaguard.app.services.state_store import LocalStateStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        redis_enabled=False,
        fallback_lock_timeout_seconds=0.2,
        fallback_lock_lease_seconds=5.0,
        suspicious_denial_threshold=10,
        suspicious_window_seconds=60,
        security_log_size=1000,
    )


@pytest.fixture
def local_store(clock, test_settings):
    return LocalStateStore(settings=test_settings, clock=clock)


def _fmt(value: float) -> bytes:
    return ("%.17g" % value).encode()


@pytest.fixture
def mock_redis(clock):
    """Create a mock Redis client for testing.

    Keeps string values in ``redis.data``, bucket hashes in ``redis.hashes``
    and expiry deadlines in ``redis.ttls``, all against the fake clock.
    """
    redis = MagicMock()
    redis.data = {}
    redis.hashes = {}
    redis.ttls = {}
    redis.eval_calls = []

    def _expired(key):
        if key in redis.ttls and redis.ttls[key] < clock():
            redis.data.pop(key, None)
            redis.hashes.pop(key, None)
            redis.ttls.pop(key, None)
            return True
        return False

    async def mock_get(key):
        _expired(key)
        value = redis.data.get(key)
        return value.encode() if isinstance(value, str) else value

    async def mock_setex(key, ttl, value):
        redis.data[key] = value.decode() if isinstance(value, bytes) else str(value)
        redis.ttls[key] = clock() + ttl

    async def mock_expire(key, ttl):
        if _expired(key) or (key not in redis.data and key not in redis.hashes):
            return 0
        redis.ttls[key] = clock() + ttl
        return 1

    async def mock_mget(keys):
        values = []
        for key in keys:
            values.append(await mock_get(key))
        return values

    async def mock_eval(script, num_keys, *args):
        """Mock Redis Lua script execution for TOKEN_BUCKET_SCRIPT.

        - KEYS[1]: bucket key
        - ARGV: now, capacity, rate, cost, ttl
        """
        redis.eval_calls.append(args)
        key = args[0]
        now, capacity, rate, cost = (float(a) for a in args[1:5])
        ttl = int(args[5])

        _expired(key)
        bucket = redis.hashes.get(key)
        if bucket is None:
            tokens, last_refill = capacity, now
        else:
            tokens, last_refill = float(bucket["tokens"]), float(bucket["last_refill"])

        elapsed = max(0.0, now - last_refill)
        tokens = min(capacity, tokens + elapsed * rate)

        allowed, retry_after = 0, 0.0
        if tokens >= cost:
            tokens -= cost
            allowed = 1
        else:
            retry_after = float(math.ceil((cost - tokens) / rate))

        redis.hashes[key] = {
            "tokens": _fmt(tokens).decode(),
            "last_refill": _fmt(max(last_refill, now)).decode(),
        }
        redis.ttls[key] = clock() + ttl
        return [allowed, _fmt(tokens), _fmt(retry_after)]

    def mock_pipeline(*args, **kwargs):
        pipe = MagicMock()
        ops = []

        def incr(key):
            ops.append(("incr", key))

        def expire(key, ttl):
            ops.append(("expire", key, ttl))

        async def execute():
            results = []
            for op in ops:
                if op[0] == "incr":
                    _expired(op[1])
                    new_value = int(redis.data.get(op[1], "0")) + 1
                    redis.data[op[1]] = str(new_value)
                    results.append(new_value)
                else:
                    results.append(await mock_expire(op[1], op[2]))
            ops.clear()
            return results

        pipe.incr = incr
        pipe.expire = expire
        pipe.execute = execute
        return pipe

    redis.get = mock_get
    redis.setex = mock_setex
    redis.expire = mock_expire
    redis.mget = mock_mget
    redis.eval = mock_eval
    redis.pipeline = mock_pipeline
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()

    return redis
