"""Redis Lua scripts for distributed rate limiting.

These scripts provide atomic operations to prevent TOCTOU race conditions
when checking and consuming tokens across multiple instances.
"""

# Lua script for atomic token bucket check-and-consume with lazy initialization
# KEYS[1]: bucket hash key (fields: tokens, last_time)
# ARGV[1]: burst (bucket capacity)
# ARGV[2]: rate (tokens added per period)
# ARGV[3]: period in seconds
# ARGV[4]: now, unix seconds supplied by the caller
# ARGV[5]: ttl in seconds
# Returns {allowed (0|1), floor(remaining tokens), reset_after seconds}
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local burst = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local period = tonumber(ARGV[3])
    local now = tonumber(ARGV[4])
    local ttl = tonumber(ARGV[5])

    local state = redis.call('HMGET', key, 'tokens', 'last_time')
    local tokens = tonumber(state[1])
    local last_time = tonumber(state[2])

    -- First access: bucket starts full
    if tokens == nil or last_time == nil then
        tokens = burst
        last_time = now
    end

    -- Refill, clamped to capacity before consuming
    local elapsed = now - last_time
    if elapsed < 0 then
        elapsed = 0
    end
    tokens = tokens + (elapsed / period) * rate
    if tokens > burst then
        tokens = burst
    end

    local allowed = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    end

    redis.call('HSET', key, 'tokens', tostring(tokens), 'last_time', tostring(now))
    redis.call('EXPIRE', key, ttl)

    local reset_after = 0
    if tokens < burst then
        reset_after = math.ceil((burst - tokens) / rate * period)
    end

    return {allowed, math.floor(tokens), reset_after}
"""
