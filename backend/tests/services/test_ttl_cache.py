# tests/services/test_ttl_cache.py
"""
Tests for the reference data TTL cache

Run with: pytest tests/services/test_ttl_cache.py -v
"""

import pytest

from simpipe.services.ttl_cache import TTLCache


@pytest.fixture
def ttl_cache(clock):
    return TTLCache(60, clock=clock, name="test")


class TestTTLCache:

    def test_get_within_ttl(self, ttl_cache, clock):
        ttl_cache.set("k", "v")

        clock.advance(seconds=59)

        assert ttl_cache.get("k") == "v"
        assert ttl_cache.stored_at("k") is not None

    def test_expired_is_miss(self, ttl_cache, clock):
        ttl_cache.set("k", "v")

        clock.advance(seconds=60)

        assert ttl_cache.get("k") is None
        assert ttl_cache.misses == 1

    def test_get_or_load_calls_loader_once(self, ttl_cache):
        calls = []

        def loader():
            calls.append(1)
            return {"loaded": True}

        assert ttl_cache.get_or_load("k", loader) == {"loaded": True}
        assert ttl_cache.get_or_load("k", loader) == {"loaded": True}
        assert len(calls) == 1

    def test_purge_expired(self, ttl_cache, clock):
        ttl_cache.set("old", 1)
        clock.advance(seconds=30)
        ttl_cache.set("new", 2)
        clock.advance(seconds=31)

        assert ttl_cache.purge_expired() == 1
        assert len(ttl_cache) == 1
        assert ttl_cache.get("new") == 2

    def test_stats_and_clear(self, ttl_cache):
        ttl_cache.set("k", "v")
        ttl_cache.get("k")
        ttl_cache.get("missing")

        stats = ttl_cache.stats()
        assert stats == {"name": "test", "size": 1, "hits": 1, "misses": 1, "hit_rate": 0.5}

        ttl_cache.clear()
        assert len(ttl_cache) == 0
