"""Tests for the rate limiting HTTP middleware."""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from quotagate.app.exceptions import RateLimitExceededError, StoreUnavailableError
from quotagate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    get_client_identity,
    rate_limit_exceeded_handler,
    require_rate_limit,
    store_unavailable_handler,
)
from quotagate.app.services.rate_limit import (
    UNLIMITED,
    FailurePolicy,
    PolicySet,
    RateLimiter,
    Rule,
    Verdict,
)


def make_limiter(verdict=None, error=None):
    limiter = MagicMock()
    limiter.allow = AsyncMock(return_value=verdict, side_effect=error)
    return limiter


def make_app(limiter, **kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter, **kwargs)

    @app.get("/api/test")
    async def endpoint():
        return {"ok": True}

    return app


class TestRateLimitMiddleware:
    """Verdicts mapped onto HTTP responses."""

    def test_allowed_request_gets_headers(self):
        reset_at = time.time() + 1
        limiter = make_limiter(Verdict(allowed=True, remaining=4, reset_at=reset_at))
        client = TestClient(make_app(limiter))

        response = client.get("/api/test", headers={"X-Forwarded-For": "10.0.0.1"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert response.headers["X-RateLimit-Reset"] == str(int(reset_at))
        identity, path = limiter.allow.await_args.args
        assert (identity, path) == ("10.0.0.1", "/api/test")

    def test_unlimited_request_has_no_headers(self):
        limiter = make_limiter(Verdict.unlimited())
        client = TestClient(make_app(limiter))

        response = client.get("/api/test")

        assert response.status_code == 200
        assert "X-RateLimit-Remaining" not in response.headers
        assert "X-RateLimit-Reset" not in response.headers

    def test_denied_request_returns_429(self):
        limiter = make_limiter(Verdict(allowed=False, remaining=0, reset_at=time.time() + 5))
        client = TestClient(make_app(limiter))

        response = client.get("/api/test")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert 1 <= int(response.headers["Retry-After"]) <= 5
        assert body["retry_after"] == int(response.headers["Retry-After"])
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_query_string_not_part_of_path(self):
        limiter = make_limiter(Verdict.unlimited())
        client = TestClient(make_app(limiter))

        client.get("/api/test?page=2")

        assert limiter.allow.await_args.args[1] == "/api/test"

    def test_unidentified_client_rejected(self):
        limiter = make_limiter(Verdict.unlimited())
        client = TestClient(make_app(limiter, identity_func=lambda request: ""))

        response = client.get("/api/test")

        assert response.status_code == 403
        assert response.json() == {"error": "unable to identify client"}
        limiter.allow.assert_not_awaited()

    def test_custom_identity_func(self):
        limiter = make_limiter(Verdict.unlimited())
        client = TestClient(
            make_app(limiter, identity_func=lambda request: request.headers.get("X-API-Key"))
        )

        client.get("/api/test", headers={"X-API-Key": "key-123"})

        assert limiter.allow.await_args.args[0] == "key-123"

    def test_store_error_returns_503(self):
        limiter = make_limiter(error=StoreUnavailableError("Connection refused", key="k"))
        client = TestClient(make_app(limiter))

        response = client.get("/api/test")

        assert response.status_code == 503
        assert response.json()["error"] == "rate_limit_unavailable"

    def test_degraded_denial_is_503_not_429(self):
        limiter = make_limiter(
            Verdict(allowed=False, remaining=0, reset_at=time.time() + 1, degraded=True)
        )
        client = TestClient(make_app(limiter))

        response = client.get("/api/test")

        assert response.status_code == 503
        assert response.json()["error"] == "rate_limit_unavailable"
        assert "Retry-After" not in response.headers
        assert "X-RateLimit-Remaining" not in response.headers

    def test_degraded_admission_has_no_headers(self):
        limiter = make_limiter(Verdict(allowed=True, remaining=UNLIMITED, degraded=True))
        client = TestClient(make_app(limiter))

        response = client.get("/api/test")

        assert response.status_code == 200
        assert "X-RateLimit-Remaining" not in response.headers

    def test_limiter_from_app_state(self):
        limiter = make_limiter(Verdict(allowed=False, remaining=0, reset_at=time.time() + 1))
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware)
        app.state.rate_limiter = limiter

        @app.get("/api/test")
        async def endpoint():
            return {"ok": True}

        response = TestClient(app).get("/api/test")
        assert response.status_code == 429

    def test_no_limiter_passes_through(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware)

        @app.get("/api/test")
        async def endpoint():
            return {"ok": True}

        response = TestClient(app).get("/api/test")
        assert response.status_code == 200


def make_request(headers=None, client=("192.168.1.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIdentity:
    """Client IP extraction."""

    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}, "203.0.113.5"),
            ({"X-Real-IP": "198.51.100.7"}, "198.51.100.7"),
            ({"X-Forwarded-For": "203.0.113.5", "X-Real-IP": "198.51.100.7"}, "203.0.113.5"),
            ({}, "192.168.1.9"),
        ],
    )
    def test_header_precedence(self, headers, expected):
        assert get_client_identity(make_request(headers)) == expected

    def test_no_client(self):
        assert get_client_identity(make_request(client=None)) == ""


class TestRequireRateLimit:
    """Per-route dependency instead of the middleware."""

    @pytest.fixture
    def make_route_app(self):
        def _make(limiter, identity_func=None):
            app = FastAPI()
            app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
            app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
            app.state.rate_limiter = limiter

            @app.post("/api/login", dependencies=[Depends(require_rate_limit(identity_func))])
            async def login():
                return {"ok": True}

            return app

        return _make

    def test_allowed(self, make_route_app):
        limiter = make_limiter(Verdict(allowed=True, remaining=2, reset_at=time.time() + 1))
        response = TestClient(make_route_app(limiter)).post("/api/login")

        assert response.status_code == 200
        assert limiter.allow.await_args.args[1] == "/api/login"

    def test_denied_raises_429(self, make_route_app):
        reset_at = time.time() + 3
        limiter = make_limiter(Verdict(allowed=False, remaining=0, reset_at=reset_at))
        response = TestClient(make_route_app(limiter)).post("/api/login")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert 1 <= int(response.headers["Retry-After"]) <= 3
        assert response.headers["X-RateLimit-Reset"] == str(int(reset_at))

    def test_unidentified_client(self, make_route_app):
        limiter = make_limiter(Verdict.unlimited())
        response = TestClient(make_route_app(limiter, identity_func=lambda request: None)).post("/api/login")

        assert response.status_code == 403
        limiter.allow.assert_not_awaited()

    def test_store_error_returns_503(self, make_route_app):
        limiter = make_limiter(error=StoreUnavailableError("Connection refused", key="k"))
        response = TestClient(make_route_app(limiter)).post("/api/login")

        assert response.status_code == 503
        assert response.json()["error"] == "rate_limit_unavailable"

    def test_degraded_denial_returns_503(self, make_route_app):
        limiter = make_limiter(
            Verdict(allowed=False, remaining=0, reset_at=time.time() + 1, degraded=True)
        )
        response = TestClient(make_route_app(limiter)).post("/api/login")

        assert response.status_code == 503


class TestFailurePolicyOverHttp:
    """A real RateLimiter over an unreachable Redis, behind the middleware."""

    @pytest.fixture
    def policy(self):
        return PolicySet(rules=[Rule(path="/api/*", limit_per_second=1)])

    @pytest.mark.parametrize(
        "failure_policy,status",
        [
            (FailurePolicy.RAISE, 503),
            (FailurePolicy.OPEN, 200),
            (FailurePolicy.CLOSED, 503),
        ],
    )
    def test_middleware(self, failing_redis, policy, failure_policy, status):
        limiter = RateLimiter(failing_redis, policy, failure_policy=failure_policy)
        response = TestClient(make_app(limiter)).get("/api/test")

        assert response.status_code == status
        assert "X-RateLimit-Remaining" not in response.headers
        assert "Retry-After" not in response.headers

    @pytest.mark.parametrize(
        "failure_policy,status",
        [
            (FailurePolicy.RAISE, 503),
            (FailurePolicy.OPEN, 200),
            (FailurePolicy.CLOSED, 503),
        ],
    )
    def test_route_dependency(self, failing_redis, policy, failure_policy, status):
        app = FastAPI()
        app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
        app.state.rate_limiter = RateLimiter(failing_redis, policy, failure_policy=failure_policy)

        @app.get("/api/test", dependencies=[Depends(require_rate_limit())])
        async def endpoint():
            return {"ok": True}

        response = TestClient(app).get("/api/test")
        assert response.status_code == status
