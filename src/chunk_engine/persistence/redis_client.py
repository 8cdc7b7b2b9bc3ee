"""
Redis client with connection pooling.

One process-wide pool is shared by every store built from the same
settings; retry context stores of concurrent chunk workers draw
connections from it.
"""

from typing import Optional

import structlog
from redis import ConnectionPool, Redis

from chunk_engine.config import Settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client factory over a shared connection pool."""

    _pool: Optional[ConnectionPool] = None

    @classmethod
    def get_client(cls, settings: Settings) -> Redis:
        """
        Get a Redis client backed by the shared pool.

        Args:
            settings: Application settings (REDIS_URL, REDIS_MAX_CONNECTIONS)

        Returns:
            Redis client instance
        """
        if cls._pool is None:
            cls._pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                decode_responses=True,  # Contexts are JSON strings
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )
            logger.info(
                "Initialized Redis connection pool",
                extra={"max_connections": settings.REDIS_MAX_CONNECTIONS},
            )

        return Redis(connection_pool=cls._pool)

    @classmethod
    def close_pool(cls) -> None:
        """Disconnect and forget the shared pool."""
        if cls._pool is not None:
            cls._pool.disconnect()
            cls._pool = None
            logger.info("Closed Redis connection pool")
