"""Distributed rate limiting using Redis for multi-instance deployments.

This package provides:
- models.py: Rule, PolicySet, Verdict and related types
- matcher.py: Ordered path rule matching with "*" wildcards
- redis_lua.py: Atomic token bucket Lua script
- token_bucket.py: Token bucket engine running the script
- enforcer.py: Per-second / per-minute window composition
- service.py: RateLimiter facade
"""

from quotagate.app.services.rate_limit.models import (
    UNLIMITED,
    BucketResult,
    FailurePolicy,
    PolicySet,
    Rule,
    Verdict,
)
from quotagate.app.services.rate_limit.matcher import (
    find_matching_rule,
    match_rule,
    path_matches,
)
from quotagate.app.services.rate_limit.redis_lua import TOKEN_BUCKET_SCRIPT
from quotagate.app.services.rate_limit.token_bucket import (
    SCOPE_MINUTE,
    SCOPE_SECOND,
    TokenBucketEngine,
    make_bucket_key,
)
from quotagate.app.services.rate_limit.enforcer import DualWindowEnforcer
from quotagate.app.services.rate_limit.service import RateLimiter

__all__ = [
    "UNLIMITED",
    "BucketResult",
    "FailurePolicy",
    "PolicySet",
    "Rule",
    "Verdict",
    "find_matching_rule",
    "match_rule",
    "path_matches",
    "TOKEN_BUCKET_SCRIPT",
    "SCOPE_MINUTE",
    "SCOPE_SECOND",
    "TokenBucketEngine",
    "make_bucket_key",
    "DualWindowEnforcer",
    "RateLimiter",
]
