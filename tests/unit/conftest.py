"""Unit test fixtures (mocks and stubs).

Provides mock objects for testing without external dependencies.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from execution_gateway.models.usage_models import UsageRecord


@pytest.fixture
def mock_async_redis():
    """Mock AsyncRedis client for unit tests (async).

    ``pipeline()`` returns an async context manager whose queued commands
    are plain MagicMocks and whose ``execute`` is awaitable.
    """
    mock = AsyncMock()
    mock.lrange = AsyncMock(return_value=[])
    mock.delete = AsyncMock(return_value=1)
    mock.rpush = AsyncMock(return_value=1)

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    mock.pipeline = MagicMock(return_value=pipe)
    mock.pipe = pipe
    mock.aclose = AsyncMock()
    mock.connection_pool = MagicMock()
    mock.connection_pool.disconnect = AsyncMock()
    return mock


@pytest.fixture
def make_record(wall_clock):
    """Factory fixture to create UsageRecord with custom values.

    Usage:
        def test_something(make_record):
            record = make_record(tokens_used=500, cost=0.01)
    """
    def _create(**overrides) -> UsageRecord:
        values = {
            "provider": "openai",
            "model": "gpt-4-turbo",
            "operation": "content.generate",
            "tokens_used": 100,
            "cost": 0.001,
            "duration_ms": 250,
            "timestamp": wall_clock(),
            "success": True,
        }
        values.update(overrides)
        return UsageRecord(**values)

    return _create
