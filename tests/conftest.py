"""Shared fixtures for rate limiter tests."""

from unittest.mock import MagicMock

import fakeredis
import fakeredis.aioredis
import pytest

from quotagate.app.services.rate_limit import PolicySet, RateLimiter, Rule



@pytest.fixture
def redis_client():
    """Create an isolated fakeredis client that executes real Lua scripts.

    A dedicated FakeServer keeps state from leaking between tests.
    """
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
def failing_redis():
    """Create a mock Redis client whose script execution always fails."""
    import redis

    client = MagicMock()

    async def mock_eval(script, num_keys, *args):
        raise redis.ConnectionError("Connection refused")

    client.eval = mock_eval
    return client


@pytest.fixture
def make_limiter(redis_client):
    """Build a RateLimiter over the fakeredis client from rules."""

    def _make(*rules: Rule, default_rule: Rule | None = None, enabled: bool = True, **kwargs):
        policy = PolicySet(enabled=enabled, rules=list(rules), default_rule=default_rule)
        return RateLimiter(redis_client, policy, **kwargs)

    return _make
