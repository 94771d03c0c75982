"""
Redis client for the reservation ledger.
Separated from business logic for clean architecture.
"""

from typing import Optional

import redis.asyncio as redis

from seatbook.core.config import get_settings
from seatbook.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """Process-wide async Redis client with connection pooling."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create the Redis client instance."""
        if cls._instance is None:
            settings = get_settings()
            cls._instance = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            logger.info("redis_client_created", url=settings.REDIS_URL)
        return cls._instance

    @classmethod
    def set_client(cls, client: Optional[redis.Redis]) -> None:
        """Install a pre-built client (tests, alternative pools)."""
        cls._instance = client

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None


# Convenience functions
async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    return await RedisClient.get_client()


async def close_redis() -> None:
    await RedisClient.close()


async def ping_redis() -> dict:
    """Ledger health summary for the health endpoint."""
    try:
        client = await get_redis()
        await client.ping()
        return {"status": "connected"}
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
