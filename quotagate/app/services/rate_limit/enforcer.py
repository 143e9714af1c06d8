"""Dual-window enforcement: per-second and per-minute token buckets."""

from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.exceptions import InvalidConfigurationError
from quotagate.app.services.rate_limit.models import BucketResult, Rule, Verdict
from quotagate.app.services.rate_limit.token_bucket import (
    SCOPE_MINUTE,
    SCOPE_PERIODS,
    SCOPE_SECOND,
    TokenBucketEngine,
    make_bucket_key,
)

logger = get_logger(__name__)


class DualWindowEnforcer:
    """Composes up to two token bucket checks into one verdict.

    The per-second window is checked first; a denial there is returned
    without touching the per-minute bucket. When both windows pass, the
    reported remaining/reset figures come from the per-second window.
    """

    def __init__(self, engine: TokenBucketEngine) -> None:
        self._engine = engine

    async def _check_window(
        self, scope: str, rule: Rule, limit: int, identity: str, path: str, now: float
    ) -> BucketResult:
        return await self._engine.check(
            key=make_bucket_key(scope, identity, path),
            rate=limit,
            burst=rule.burst_for(limit),
            period=SCOPE_PERIODS[scope],
            now=now,
        )

    async def enforce(self, rule: Rule, identity: str, path: str, now: float) -> Verdict:
        """Run the configured windows of a rule for one request.

        Raises:
            InvalidConfigurationError: Rule has neither window configured
            StoreUnavailableError: Propagated from the engine
            MalformedStoreResponseError: Propagated from the engine
        """
        if rule.limit_per_second <= 0 and rule.limit_per_minute <= 0:
            raise InvalidConfigurationError(
                f"Rule {rule.pattern!r} has no window configured", rule_path=rule.pattern
            )

        reported: BucketResult | None = None

        if rule.limit_per_second > 0:
            result = await self._check_window(
                SCOPE_SECOND, rule, rule.limit_per_second, identity, path, now
            )
            if not result.allowed:
                return self._deny(SCOPE_SECOND, result, rule, identity, path, now)
            reported = result

        if rule.limit_per_minute > 0:
            result = await self._check_window(
                SCOPE_MINUTE, rule, rule.limit_per_minute, identity, path, now
            )
            if not result.allowed:
                return self._deny(SCOPE_MINUTE, result, rule, identity, path, now)
            # Minute figures are only reported when no per-second window exists
            if reported is None:
                reported = result

        return Verdict(
            allowed=True,
            remaining=reported.remaining,
            reset_at=now + reported.reset_after,
        )

    @staticmethod
    def _deny(
        scope: str, result: BucketResult, rule: Rule, identity: str, path: str, now: float
    ) -> Verdict:
        logger.info(
            "Rate limit exceeded",
            extra=get_log_context(
                identity=identity, path=path, rule=rule.pattern, scope=scope,
                remaining=result.remaining,
            ),
        )
        return Verdict(
            allowed=False,
            remaining=result.remaining,
            reset_at=now + result.reset_after,
        )
