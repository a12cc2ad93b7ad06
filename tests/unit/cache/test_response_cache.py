"""
Unit tests for the sharded TTL ResponseCache.
"""

import pytest

from execution_gateway.cache.response_cache import ResponseCache


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(ttl=60.0, max_entries=3, shards=1, clock=clock)


def test_put_then_get(cache):
    cache.put("content.generate", {"text": "hello"})

    assert cache.get("content.generate") == {"text": "hello"}
    assert "content.generate" in cache
    assert cache.hits == 1


def test_miss_returns_default(cache):
    sentinel = object()

    assert cache.get("missing", sentinel) is sentinel
    assert cache.misses == 1


def test_entry_expires_after_ttl(cache, clock):
    cache.put("analysis.run", {"score": 3})
    clock.advance(61)

    assert cache.get("analysis.run") is None
    assert len(cache) == 0


def test_entry_alive_at_exact_ttl(cache, clock):
    cache.put("analysis.run", {"score": 3})
    clock.advance(60)

    assert cache.get("analysis.run") == {"score": 3}


def test_put_replaces_existing_value(cache):
    cache.put("k", 1)
    cache.put("k", 2)

    assert cache.get("k") == 2
    assert len(cache) == 1


def test_oldest_entry_evicted_at_capacity(cache):
    for key in ("a", "b", "c", "d"):
        cache.put(key, key.upper())

    assert len(cache) == 3
    assert "a" not in cache
    assert cache.get("d") == "D"


def test_put_sweeps_expired_entries(cache, clock):
    cache.put("old", 1)
    clock.advance(61)
    cache.put("new", 2)

    assert len(cache) == 1


def test_purge_expired(clock):
    cache = ResponseCache(ttl=10.0, max_entries=100, clock=clock)
    for i in range(5):
        cache.put(f"key-{i}", i)
    clock.advance(11)

    assert cache.purge_expired() == 5
    assert len(cache) == 0


def test_clear(cache):
    cache.put("a", 1)
    cache.put("b", 2)

    cache.clear()

    assert len(cache) == 0


def test_entry_exposes_stored_at(cache, clock):
    cache.put("a", 1)

    entry = cache.entry("a")

    assert entry.value == 1
    assert entry.stored_at == clock()


def test_invalid_construction():
    with pytest.raises(ValueError):
        ResponseCache(ttl=0)
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
