"""
Usage ledger persistence.

- store.py: UsageStore protocol, in-memory and JSON file backends
- redis_store.py: Redis list backend (redis.asyncio)
- redis_client.py: Shared async Redis connection pool
- flusher.py: Background interval flushing of the tracker's ledger
"""

from execution_gateway.persistence.flusher import DEFAULT_FLUSH_INTERVAL, UsageFlusher
from execution_gateway.persistence.redis_store import DEFAULT_LEDGER_KEY, RedisUsageStore
from execution_gateway.persistence.store import InMemoryUsageStore, JsonFileUsageStore, UsageStore

__all__ = [
    "UsageStore",
    "InMemoryUsageStore",
    "JsonFileUsageStore",
    "RedisUsageStore",
    "UsageFlusher",
    "DEFAULT_FLUSH_INTERVAL",
    "DEFAULT_LEDGER_KEY",
]
