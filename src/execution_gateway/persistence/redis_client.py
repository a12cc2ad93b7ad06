"""
Async Redis connections for the usage store.

Pools are shared per Redis URL for the life of the process so every store
(and every gateway) pointing at the same server reuses connections.
"""

from typing import Dict

import structlog
from redis.asyncio import ConnectionPool as AsyncConnectionPool
from redis.asyncio import Redis as AsyncRedis

from execution_gateway.config import Settings

logger = structlog.get_logger(__name__)

SOCKET_TIMEOUT_SECONDS = 5


class RedisClient:
    """Registry of async connection pools keyed by Redis URL."""

    _pools: Dict[str, AsyncConnectionPool] = {}

    @classmethod
    def get_async_client(cls, settings: Settings) -> AsyncRedis:
        """
        Client bound to the shared pool for ``settings.REDIS_URL``.

        The pool is created on first use with ``REDIS_MAX_CONNECTIONS``;
        responses are decoded to str since the ledger is stored as JSON.
        """
        pool = cls._pools.get(settings.REDIS_URL)
        if pool is None:
            pool = AsyncConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_timeout=SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
                retry_on_timeout=True,
            )
            cls._pools[settings.REDIS_URL] = pool
            logger.info("Created Redis pool", max_connections=settings.REDIS_MAX_CONNECTIONS)
        return AsyncRedis(connection_pool=pool)

    @classmethod
    async def close_all(cls) -> int:
        """Disconnect every pool; returns how many were closed."""
        pools, cls._pools = cls._pools, {}
        for pool in pools.values():
            await pool.disconnect()
        if pools:
            logger.info("Closed Redis pools", count=len(pools))
        return len(pools)
