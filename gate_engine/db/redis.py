"""Redis client used for gate evaluation locks and readiness checks.

Redis is optional: without it the API still serves and sweeps run unlocked,
so callers check availability with ping_redis() instead of failing hard.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from gate_engine.core.config import get_settings

logger = structlog.get_logger(__name__)

_client: redis.Redis | None = None


async def init_redis(url: str | None = None) -> redis.Redis:
    """Create the pooled client and check it answers. Idempotent."""
    global _client

    if _client is not None:
        return _client

    settings = get_settings()
    client = redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        raise

    _client = client
    return _client


async def close_redis() -> None:
    global _client

    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The pooled client.

    Raises:
        RuntimeError: init_redis() has not run or Redis was unavailable at startup
    """
    if _client is None:
        raise RuntimeError("Redis is not connected; gate locks are unavailable")
    return _client


async def ping_redis() -> bool:
    """True when Redis is connected and answers PING."""
    if _client is None:
        return False
    try:
        return bool(await _client.ping())
    except (RedisError, OSError) as e:
        logger.warning("redis_ping_failed", error=str(e), error_type=type(e).__name__)
        return False
