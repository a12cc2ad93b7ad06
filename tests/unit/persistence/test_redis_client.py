"""
Unit tests for the shared async Redis pool registry.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from execution_gateway.config import Settings
from execution_gateway.persistence.redis_client import RedisClient


def settings_for(url: str) -> MagicMock:
    settings = MagicMock(spec=Settings)
    settings.REDIS_URL = url
    settings.REDIS_MAX_CONNECTIONS = 20
    return settings


@pytest.fixture(autouse=True)
def isolated_pools(monkeypatch):
    monkeypatch.setattr(RedisClient, "_pools", {})


def test_pool_created_once_per_url():
    with patch("execution_gateway.persistence.redis_client.AsyncConnectionPool") as pool_cls:
        pool_cls.from_url.side_effect = lambda url, **kwargs: MagicMock(name=url)

        first = RedisClient.get_async_client(settings_for("redis://a:6379/0"))
        second = RedisClient.get_async_client(settings_for("redis://a:6379/0"))
        other = RedisClient.get_async_client(settings_for("redis://b:6379/0"))

    assert pool_cls.from_url.call_count == 2
    assert first.connection_pool is second.connection_pool
    assert other.connection_pool is not first.connection_pool
    _, kwargs = pool_cls.from_url.call_args
    assert kwargs["max_connections"] == 20
    assert kwargs["decode_responses"] is True


@pytest.mark.asyncio
async def test_close_all_disconnects_every_pool():
    pools = {"redis://a": MagicMock(disconnect=AsyncMock()), "redis://b": MagicMock(disconnect=AsyncMock())}
    RedisClient._pools = dict(pools)

    closed = await RedisClient.close_all()

    assert closed == 2
    for pool in pools.values():
        pool.disconnect.assert_awaited_once()
    assert RedisClient._pools == {}


@pytest.mark.asyncio
async def test_close_all_without_pools():
    assert await RedisClient.close_all() == 0
