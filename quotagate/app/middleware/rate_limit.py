"""Rate limiting middleware.

Maps RateLimiter verdicts onto HTTP: rate limit headers, 429 on denial,
and 503 when Redis is unavailable. Whether an outage admits or rejects
requests is decided by the limiter's FailurePolicy; degraded verdicts
never carry rate limit headers.
"""

import time
from typing import Callable, Optional

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.exceptions import RateLimitExceededError, StoreUnavailableError
from quotagate.app.services.rate_limit import RateLimiter, Verdict

logger = get_logger(__name__)

IdentityFunc = Callable[[Request], Optional[str]]


def get_client_identity(request: Request) -> str:
    """Get the client IP for rate limiting.

    Prefers the first X-Forwarded-For entry, then X-Real-IP, then the socket
    peer. Forwarded headers can be spoofed unless a trusted proxy sets them.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
        if client_ip:
            return client_ip

    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip

    return request.client.host if request.client else ""


def _unavailable_response(error: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={
            "error": "rate_limit_unavailable",
            "message": "Rate limiting is temporarily unavailable.",
        },
    )


def _rate_limit_headers(verdict: Verdict, now: float) -> dict[str, str]:
    if verdict.degraded or not verdict.is_limited:
        return {}
    return {
        "X-RateLimit-Remaining": str(verdict.remaining),
        "X-RateLimit-Reset": str(int(verdict.reset_at or now)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-identity, per-path rate limits.

    Identity defaults to the client IP; pass identity_func to limit per
    user id, API key hash, or any other key.

    Redis outages follow the limiter's FailurePolicy:
    - RAISE: StoreUnavailableError reaches the middleware, 503
    - OPEN: degraded allowed verdict, request passes without headers
    - CLOSED: degraded denied verdict, 503 (not 429)
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        identity_func: Optional[IdentityFunc] = None,
    ):
        """Initialize the middleware.

        Args:
            app: ASGI application
            limiter: RateLimiter to use; falls back to app.state.rate_limiter at request time
            identity_func: Extracts the rate limit identity from a request
        """
        super().__init__(app)
        self._limiter = limiter
        self._identity_func = identity_func or get_client_identity

    def _get_limiter(self, request: Request) -> Optional[RateLimiter]:
        if self._limiter is not None:
            return self._limiter
        return getattr(request.app.state, "rate_limiter", None)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        limiter = self._get_limiter(request)
        if limiter is None:
            return await call_next(request)

        identity = self._identity_func(request)
        if not identity:
            return JSONResponse(
                status_code=403,
                content={"error": "unable to identify client"},
            )

        path = request.url.path
        now = time.time()
        try:
            verdict = await limiter.allow(identity, path, now=now)
        except StoreUnavailableError as e:
            logger.warning(
                f"Rate limiting unavailable: {e.message}. Request rejected.",
                extra=get_log_context(identity=identity, path=path),
            )
            return _unavailable_response(e)

        if verdict.degraded and not verdict.allowed:
            return _unavailable_response(StoreUnavailableError())

        headers = _rate_limit_headers(verdict, now)

        if not verdict.allowed:
            retry_after = verdict.retry_after(now)
            headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response


def require_rate_limit(identity_func: Optional[IdentityFunc] = None):
    """Create a route dependency enforcing app.state.rate_limiter.

    For routes that need limiting without the app-wide middleware. A denial
    raises RateLimitExceededError, rendered by rate_limit_exceeded_handler.
    A Redis outage (RAISE, or a degraded denial under CLOSED) raises
    StoreUnavailableError, rendered by store_unavailable_handler.

    Example:
        @app.post("/api/login", dependencies=[Depends(require_rate_limit())])
    """
    get_identity = identity_func or get_client_identity

    async def dependency(request: Request) -> Verdict:
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return Verdict.unlimited()

        identity = get_identity(request)
        if not identity:
            raise HTTPException(status_code=403, detail="unable to identify client")

        now = time.time()
        verdict = await limiter.allow(identity, request.url.path, now=now)
        if verdict.degraded and not verdict.allowed:
            raise StoreUnavailableError()
        if not verdict.allowed:
            raise RateLimitExceededError(
                retry_after=verdict.retry_after(now),
                reset_at=verdict.reset_at,
            )
        return verdict

    return dependency


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Handle RateLimitExceededError and return HTTP 429 response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "rate_limit_exceeded",
            "message": exc.message,
            "retry_after": exc.retry_after,
        },
        headers={
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(exc.reset_at)),
        },
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    """Handle StoreUnavailableError and return HTTP 503 response."""
    logger.warning(
        f"Rate limiting unavailable: {exc.message}. Request rejected.",
        extra=get_log_context(path=request.url.path),
    )
    return _unavailable_response(exc)
