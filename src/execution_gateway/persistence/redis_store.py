"""
Redis-backed usage store.

Storage Strategy:
- Ledger: List "<key>" with one JSON-encoded UsageRecord per entry
- Save replaces the list in a single MULTI/EXEC pipeline (DEL + RPUSH)
  so readers never observe a half-written ledger
"""

import json
from typing import List, Sequence

import structlog
from redis.asyncio import Redis as AsyncRedis

from execution_gateway.models.usage_models import UsageRecord

logger = structlog.get_logger(__name__)

DEFAULT_LEDGER_KEY = "gateway:usage:records"


class RedisUsageStore:
    """
    Usage ledger persisted as a Redis list.

    Attributes:
        redis: Async Redis client (decode_responses=True)
        key: List key holding the ledger
    """

    def __init__(self, redis_client: AsyncRedis, key: str = DEFAULT_LEDGER_KEY):
        self.redis = redis_client
        self.key = key

    async def save(self, records: Sequence[UsageRecord]) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self.key)
            if records:
                pipe.rpush(self.key, *(r.model_dump_json() for r in records))
            await pipe.execute()
        logger.debug("Usage ledger saved to Redis", key=self.key, records=len(records))

    async def load(self) -> List[UsageRecord]:
        entries = await self.redis.lrange(self.key, 0, -1)
        records = [UsageRecord.model_validate(json.loads(entry)) for entry in entries]
        logger.info("Usage ledger loaded from Redis", key=self.key, records=len(records))
        return records

    async def close(self) -> None:
        """Close the client and disconnect its connection pool."""
        await self.redis.aclose()
        await self.redis.connection_pool.disconnect()
        logger.info("Closed Redis usage store", key=self.key)
