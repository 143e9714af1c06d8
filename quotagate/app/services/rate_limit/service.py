"""Rate limiter facade for multi-instance deployments.

Resolves the rule for a path and delegates to the dual-window enforcer.
All shared state lives in Redis; the limiter itself holds only the
client handle and the policy set, so any number of instances can run
it concurrently.
"""

import time
from typing import Any, Optional

from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.exceptions import StoreUnavailableError
from quotagate.app.services.rate_limit.enforcer import DualWindowEnforcer
from quotagate.app.services.rate_limit.matcher import match_rule
from quotagate.app.services.rate_limit.models import (
    UNLIMITED,
    FailurePolicy,
    PolicySet,
    Verdict,
)
from quotagate.app.services.rate_limit.token_bucket import TokenBucketEngine

logger = get_logger(__name__)


class RateLimiter:
    """Distributed per-identity, per-path rate limiter.

    Provides:
    - Ordered rule matching with an optional default rule
    - Per-second and per-minute token buckets evaluated atomically in Redis
    - A global enabled switch
    - Configurable behaviour when Redis is unavailable (raise, open, closed)
    """

    # Seconds a fail-closed verdict asks the caller to wait
    FAIL_CLOSED_RETRY_SECONDS = 1

    def __init__(
        self,
        redis_client: Any,
        policy: PolicySet,
        failure_policy: FailurePolicy = FailurePolicy.RAISE,
        store_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            redis_client: redis.asyncio.Redis compatible client, owned by the caller
            policy: Validated policy set
            failure_policy: Behaviour on StoreUnavailableError
            store_timeout: Upper bound in seconds for each bucket check
        """
        self._policy = policy
        self._failure_policy = FailurePolicy(failure_policy)
        self._engine = TokenBucketEngine(redis_client, timeout=store_timeout)
        self._enforcer = DualWindowEnforcer(self._engine)

    @property
    def policy(self) -> PolicySet:
        return self._policy

    @property
    def engine(self) -> TokenBucketEngine:
        return self._engine

    def update_policy(self, policy: PolicySet) -> None:
        """Swap in a new policy set; takes effect for subsequent calls."""
        self._policy = policy
        logger.info(
            f"Rate limit policy updated: enabled={policy.enabled}, "
            f"rules={len(policy.rules)}, default={'yes' if policy.default_rule else 'no'}"
        )

    async def allow(self, identity: str, path: str, now: Optional[float] = None) -> Verdict:
        """Decide whether a request from identity to path may proceed.

        Args:
            identity: Opaque caller key (IP address, user id, token hash, ...)
            path: Request path without query string
            now: Unix time in seconds; defaults to time.time()

        Returns:
            Verdict. remaining is -1 when the limiter is disabled or no rule applies.

        Raises:
            InvalidConfigurationError: The resolved rule is invalid
            StoreUnavailableError: Redis failed and failure_policy is RAISE
            MalformedStoreResponseError: The bucket script replied with an unexpected shape
        """
        policy = self._policy
        if not policy.enabled:
            return Verdict.unlimited()

        rule = match_rule(policy, path)
        if rule is None:
            return Verdict.unlimited()

        # Rules built with model_construct() skip validation
        rule.validate_limits()

        if now is None:
            now = time.time()

        try:
            return await self._enforcer.enforce(rule, identity, path, now)
        except StoreUnavailableError as e:
            if self._failure_policy is FailurePolicy.RAISE:
                raise
            return self._handle_store_failure(e, identity, path, now)

    def _handle_store_failure(
        self, error: StoreUnavailableError, identity: str, path: str, now: float
    ) -> Verdict:
        """Apply the configured fail-open/fail-closed policy."""
        context = get_log_context(identity=identity, path=path)
        if self._failure_policy is FailurePolicy.OPEN:
            logger.warning(
                f"Rate limiting fail-open triggered: {error.message}. "
                "Request allowed without rate limit check.",
                extra=context,
            )
            return Verdict(allowed=True, remaining=UNLIMITED, degraded=True)

        logger.warning(
            f"Rate limiting fail-closed triggered: {error.message}. Request denied.",
            extra=context,
        )
        return Verdict(
            allowed=False,
            remaining=0,
            reset_at=now + self.FAIL_CLOSED_RETRY_SECONDS,
            degraded=True,
        )
