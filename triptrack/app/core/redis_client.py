"""
Redis connection for the pub/sub change feed.

Only touched when `change_feed_backend = "redis"`. redis-py connects
lazily, so a memory-feed deployment never opens a socket.
"""

import logging
import redis.asyncio as redis
from redis.exceptions import RedisError
from triptrack.app.core.config import settings

logger = logging.getLogger("triptrack.redis")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
    health_check_interval=30,
)


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return redis_client


async def ping_redis(client=None) -> bool:
    """True if Redis answers a PING, False otherwise."""
    client = client or redis_client
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
