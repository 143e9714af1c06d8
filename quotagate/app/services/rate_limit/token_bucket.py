"""Token bucket engine backed by a Redis Lua script.

Every check re-reads and re-writes the bucket inside one script execution,
so correctness does not depend on how many processes share the store.
Nothing about a bucket is cached in process memory between calls.
"""

import asyncio
from typing import Any, Optional

import redis

from quotagate.app.core.logging import get_logger
from quotagate.app.exceptions import MalformedStoreResponseError, StoreUnavailableError
from quotagate.app.services.rate_limit.models import BucketResult
from quotagate.app.services.rate_limit.redis_lua import TOKEN_BUCKET_SCRIPT

logger = get_logger(__name__)

KEY_PREFIX = "ratelimit"
SCOPE_SECOND = "sec"
SCOPE_MINUTE = "min"

# Window length in seconds per scope
SCOPE_PERIODS = {
    SCOPE_SECOND: 1,
    SCOPE_MINUTE: 60,
}


def make_bucket_key(scope: str, identity: str, path: str) -> str:
    """Create Redis key for a bucket: ratelimit:<scope>:<identity>:<path>."""
    return f"{KEY_PREFIX}:{scope}:{identity}:{path}"


class TokenBucketEngine:
    """Atomic admit/reject decisions against buckets stored in Redis.

    Redis key format:
    - ratelimit:sec:{identity}:{path} - per-second bucket hash
    - ratelimit:min:{identity}:{path} - per-minute bucket hash

    Each hash holds "tokens" and "last_time" and expires after 2x its
    window of inactivity.
    """

    TTL_MULTIPLIER = 2

    def __init__(self, redis_client: Any, timeout: Optional[float] = None) -> None:
        """Initialize the engine.

        Args:
            redis_client: redis.asyncio.Redis compatible client
            timeout: Upper bound in seconds for one script execution (None = client default)
        """
        self._redis = redis_client
        self._timeout = timeout

    async def check(
        self,
        key: str,
        rate: int,
        burst: int,
        period: float,
        now: float,
    ) -> BucketResult:
        """Atomically refill, try to consume one token and persist the bucket.

        Args:
            key: Bucket key (see make_bucket_key)
            rate: Tokens added per period
            burst: Bucket capacity
            period: Window length in seconds
            now: Current unix time in seconds, supplied by the caller

        Returns:
            BucketResult(allowed, floor of remaining tokens, seconds until full)

        Raises:
            StoreUnavailableError: Redis unreachable, timed out or rejected the script
            MalformedStoreResponseError: Script reply had an unexpected shape
        """
        ttl = int(period * self.TTL_MULTIPLIER)
        try:
            result = await asyncio.wait_for(
                self._redis.eval(
                    TOKEN_BUCKET_SCRIPT,
                    1,  # Number of keys
                    key,  # KEYS[1]
                    burst,  # ARGV[1]
                    rate,  # ARGV[2]
                    period,  # ARGV[3]
                    now,  # ARGV[4]
                    ttl,  # ARGV[5]
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Token bucket check timed out for {key} after {self._timeout}s")
            raise StoreUnavailableError(f"Timed out checking bucket {key}", key=key) from e
        except redis.RedisError as e:
            logger.error(f"Token bucket script failed for {key}: {e}")
            raise StoreUnavailableError(f"Redis error checking bucket {key}: {e}", key=key) from e

        return self._parse_result(key, result)

    @staticmethod
    def _parse_result(key: str, result: Any) -> BucketResult:
        """Validate the script reply: [allowed, remaining, reset_after]."""
        if not isinstance(result, (list, tuple)) or len(result) != 3:
            raise MalformedStoreResponseError(result, key=key)
        try:
            allowed, remaining, reset_after = (int(v) for v in result)
        except (TypeError, ValueError) as e:
            raise MalformedStoreResponseError(result, key=key) from e
        if allowed not in (0, 1) or remaining < 0 or reset_after < 0:
            raise MalformedStoreResponseError(result, key=key)
        return BucketResult(
            allowed=bool(allowed),
            remaining=remaining,
            reset_after=reset_after,
        )

    async def get_state(self, key: str) -> Optional[dict[str, float]]:
        """Read a bucket's raw stored fields without modifying it.

        Intended for diagnostics only; admission decisions must go through check().
        """
        try:
            raw = await self._redis.hgetall(key)
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis error reading bucket {key}: {e}", key=key) from e
        if not raw:
            return None
        state = {}
        for field, value in raw.items():
            name = field.decode() if isinstance(field, bytes) else str(field)
            state[name] = float(value)
        return state

    async def reset(self, key: str) -> bool:
        """Delete a bucket so the next check starts from a full bucket."""
        try:
            deleted = await self._redis.delete(key)
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis error resetting bucket {key}: {e}", key=key) from e
        logger.info(f"Reset rate limit bucket {key}")
        return bool(deleted)
