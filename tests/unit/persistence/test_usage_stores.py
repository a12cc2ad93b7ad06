"""
Unit tests for usage ledger stores (memory, JSON file, Redis).
"""

import json

import pytest

from execution_gateway.persistence.redis_store import DEFAULT_LEDGER_KEY, RedisUsageStore
from execution_gateway.persistence.store import (
    InMemoryUsageStore,
    JsonFileUsageStore,
    UsageStore,
)


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, make_record):
        store = InMemoryUsageStore()
        records = [make_record(tokens_used=1), make_record(tokens_used=2)]

        await store.save(records)

        assert await store.load() == records
        assert store.save_count == 1

    @pytest.mark.asyncio
    async def test_load_returns_copy(self, make_record):
        store = InMemoryUsageStore()
        await store.save([make_record()])

        (await store.load()).clear()

        assert len(await store.load()) == 1

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryUsageStore(), UsageStore)


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path, make_record):
        store = JsonFileUsageStore(tmp_path / "ledger" / "usage.json")
        records = [make_record(tokens_used=10, success=False, error="503 Service Unavailable")]

        await store.save(records)

        assert await store.load() == records

    @pytest.mark.asyncio
    async def test_missing_file_loads_empty(self, tmp_path):
        assert await JsonFileUsageStore(tmp_path / "absent.json").load() == []

    @pytest.mark.asyncio
    async def test_save_replaces_file_atomically(self, tmp_path, make_record):
        path = tmp_path / "usage.json"
        store = JsonFileUsageStore(path)

        await store.save([make_record()])
        await store.save([])

        assert json.loads(path.read_text()) == []
        assert not (tmp_path / "usage.json.tmp").exists()


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_save_replaces_list_in_pipeline(self, mock_async_redis, make_record):
        store = RedisUsageStore(mock_async_redis)
        records = [make_record(tokens_used=1), make_record(tokens_used=2)]

        await store.save(records)

        pipe = mock_async_redis.pipe
        mock_async_redis.pipeline.assert_called_once_with(transaction=True)
        pipe.delete.assert_called_once_with(DEFAULT_LEDGER_KEY)
        pushed = pipe.rpush.call_args.args
        assert pushed[0] == DEFAULT_LEDGER_KEY
        assert [json.loads(p)["tokens_used"] for p in pushed[1:]] == [1, 2]
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_empty_ledger_only_deletes(self, mock_async_redis):
        store = RedisUsageStore(mock_async_redis, key="tenant:usage")

        await store.save([])

        mock_async_redis.pipe.delete.assert_called_once_with("tenant:usage")
        mock_async_redis.pipe.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_load_parses_entries(self, mock_async_redis, make_record):
        record = make_record(tokens_used=77)
        mock_async_redis.lrange.return_value = [record.model_dump_json()]
        store = RedisUsageStore(mock_async_redis)

        loaded = await store.load()

        mock_async_redis.lrange.assert_awaited_once_with(DEFAULT_LEDGER_KEY, 0, -1)
        assert loaded == [record]

    @pytest.mark.asyncio
    async def test_close_disconnects_pool(self, mock_async_redis):
        store = RedisUsageStore(mock_async_redis)

        await store.close()

        mock_async_redis.aclose.assert_awaited_once()
        mock_async_redis.connection_pool.disconnect.assert_awaited_once()
