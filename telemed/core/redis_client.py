"""Redis client used by the distributed booking lock."""

import redis.asyncio as redis

from telemed.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the Redis client.

    Raises:
        RuntimeError: If REDIS_URL is not configured
    """
    global _redis_client

    if _redis_client is None:
        if not settings.redis_url:
            raise RuntimeError("REDIS_URL is not configured")
        _redis_client = redis.from_url(
            settings.redis_url,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        await client.ping()
        return True
    except Exception:
        return False


async def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
