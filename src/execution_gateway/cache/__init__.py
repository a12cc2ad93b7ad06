"""Short-TTL response cache consulted around the fallback orchestrator."""

from execution_gateway.cache.response_cache import CacheEntry, ResponseCache

__all__ = ["CacheEntry", "ResponseCache"]
