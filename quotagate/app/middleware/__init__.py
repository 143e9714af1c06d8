"""Middleware package for the rate limiter."""

from quotagate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    get_client_identity,
    rate_limit_exceeded_handler,
    require_rate_limit,
    store_unavailable_handler,
)

__all__ = [
    "RateLimitMiddleware",
    "get_client_identity",
    "rate_limit_exceeded_handler",
    "require_rate_limit",
    "store_unavailable_handler",
]
