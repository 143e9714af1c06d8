"""Redis client construction.

Clients are created explicitly and handed to the components that need
them; there is no process-wide connection registry.
"""

from typing import Any

import redis.asyncio as aioredis

from quotagate.app.core.logging import get_logger
from quotagate.app.core.security import SecretDecryptor, decrypt_redis_url

logger = get_logger(__name__)


def create_redis_client(settings: Any) -> aioredis.Redis:
    """Create an async Redis client from settings.

    The password in REDIS_URL may be an encrypted value; it is decrypted
    with SECRET_ENCRYPTION_KEY before connecting.
    """
    decryptor = SecretDecryptor(settings.secret_encryption_key, settings.secret_prefix)
    url = decrypt_redis_url(settings.redis_url, decryptor)
    client = aioredis.from_url(
        url,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_connect_timeout,
        max_connections=settings.redis_max_connections,
    )
    logger.info(
        f"Created Redis client (socket_timeout={settings.redis_socket_timeout}s, "
        f"max_connections={settings.redis_max_connections})"
    )
    return client


async def verify_connection(client: aioredis.Redis) -> bool:
    """Ping Redis, returning False instead of raising on failure."""
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.error(f"Redis ping failed: {e}")
        return False


async def close_redis_client(client: Any) -> None:
    """Close a Redis client, logging instead of raising on failure."""
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.warning(f"Error closing Redis connection: {e}")
