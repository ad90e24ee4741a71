"""Redis Lua scripts for the shared state store.

These scripts run the token-bucket read-refill-consume-write sequence as one
atomic operation, so no other caller can observe or race on an intermediate
bucket state.
"""

# Token bucket check-and-consume, mirrored by models.refill_and_consume.
# Fractional values are written and returned as %.17g strings: Redis truncates
# Lua numbers to integers in replies, and %.17g round-trips a double exactly.
#
# KEYS[1] - bucket hash (fields: tokens, last_refill)
# ARGV    - now, capacity, rate, cost, ttl
# Returns - {allowed (0|1), remaining, retry_after}
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local capacity = tonumber(ARGV[2])
    local rate = tonumber(ARGV[3])
    local cost = tonumber(ARGV[4])
    local ttl = tonumber(ARGV[5])

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])

    -- First observation starts full, burst included
    if tokens == nil or last_refill == nil then
        tokens = capacity
        last_refill = now
    end

    -- Clock regressions refill nothing
    local elapsed = math.max(0, now - last_refill)
    tokens = math.min(capacity, tokens + (elapsed * rate))

    local allowed = 0
    local retry_after = 0
    if tokens >= cost then
        tokens = tokens - cost
        allowed = 1
    else
        retry_after = math.ceil((cost - tokens) / rate)
    end

    redis.call('HSET', key,
        'tokens', string.format('%.17g', tokens),
        'last_refill', string.format('%.17g', math.max(last_refill, now)))
    redis.call('EXPIRE', key, ttl)

    return {allowed, string.format('%.17g', tokens), string.format('%.17g', retry_after)}
"""
