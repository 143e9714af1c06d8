from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI

from quotagate.app.core.config import load_policy_set, settings
from quotagate.app.core.logging import get_logger, setup_logging
from quotagate.app.core.redis import close_redis_client, create_redis_client, verify_connection
from quotagate.app.exceptions import RateLimitExceededError, StoreUnavailableError
from quotagate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    rate_limit_exceeded_handler,
    store_unavailable_handler,
)
from quotagate.app.services.rate_limit import PolicySet, RateLimiter


def create_app(
    policy: Optional[PolicySet] = None,
    redis_client: Optional[Any] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        policy: Policy set to enforce (defaults to the one described by settings)
        redis_client: Redis client to use; when omitted one is created from
            settings on startup and closed on shutdown

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    if policy is None:
        policy = load_policy_set(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create the Redis client and rate limiter; close the client on shutdown."""
        owns_client = redis_client is None
        client = create_redis_client(settings) if owns_client else redis_client

        if not await verify_connection(client):
            logger.warning("Redis is not reachable at startup; rate limiting may degrade")

        app.state.redis = client
        app.state.rate_limiter = RateLimiter(
            client,
            policy,
            failure_policy=settings.rate_limit_failure_policy,
            store_timeout=settings.rate_limit_store_timeout,
        )
        logger.info(
            "Application startup complete",
            extra={
                "rate_limit_enabled": policy.enabled,
                "rules_loaded": len(policy.rules),
                "default_rule": policy.default_rule is not None,
            },
        )

        yield

        if owns_client:
            await close_redis_client(client)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="QuotaGate",
        description="Distributed per-client, per-path rate limiting backed by Redis",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Limiter is resolved from app.state at request time
    app.add_middleware(RateLimitMiddleware)
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check including Redis connectivity."""
        limiter: RateLimiter = app.state.rate_limiter
        redis_ok = await verify_connection(app.state.redis)
        return {
            "status": "ok" if redis_ok else "degraded",
            "components": {"redis": {"status": "ok" if redis_ok else "error"}},
            "rate_limit_enabled": limiter.policy.enabled,
        }

    return app


# Create the application instance
app = create_app()
