"""Services package for the rate limiter.

This package provides:
- Distributed rate limiting (rule matching, Redis token buckets, dual windows)
"""

from quotagate.app.services.rate_limit import (
    FailurePolicy,
    PolicySet,
    RateLimiter,
    Rule,
    Verdict,
)

__all__ = [
    "FailurePolicy",
    "PolicySet",
    "RateLimiter",
    "Rule",
    "Verdict",
]
