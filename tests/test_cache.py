"""
Tests for the TTL ResponseCache.
"""

import pytest

from backstop.cache import ResponseCache
from tests.mocks.clock import FakeClock


def test_get_within_ttl_returns_value(cache: ResponseCache, clock: FakeClock):
    cache.set("k", "v")
    clock.advance(299_999)

    assert cache.get("k") == "v"


def test_stale_entry_is_purged_on_get(cache: ResponseCache, clock: FakeClock):
    cache.set("k", "v")
    cache.set("other", 1)
    assert cache.stats().size == 2

    clock.advance(300_001)

    assert cache.get("k") is None
    assert cache.stats().size == 1
    assert "k" not in cache


def test_entry_at_exact_ttl_is_still_fresh(cache: ResponseCache, clock: FakeClock):
    cache.set("k", "v")
    clock.advance(300_000)

    assert cache.get("k") == "v"


def test_set_refreshes_timestamp(cache: ResponseCache, clock: FakeClock):
    cache.set("k", "old")
    clock.advance(200_000)
    cache.set("k", "new")
    clock.advance(200_000)

    assert cache.get("k") == "new"


def test_delete_and_clear(cache: ResponseCache):
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    assert cache.get("a") is None

    cache.clear()
    assert cache.stats().size == 0


def test_stats_reports_stale_without_purging(cache: ResponseCache, clock: FakeClock):
    cache.set("a", 1)
    clock.advance(300_001)
    cache.set("b", 2)
    clock.advance(1_000)

    stats = cache.stats()

    assert stats.size == 2
    assert stats.keys == ["a", "b"]
    assert stats.oldest_entry_age_ms == 301_001
    assert stats.stale_unpurged_count == 1


def test_stats_on_empty_cache(cache: ResponseCache):
    stats = cache.stats()
    assert stats.size == 0
    assert stats.keys == []
    assert stats.oldest_entry_age_ms is None
    assert stats.stale_unpurged_count == 0


def test_custom_ttl(clock: FakeClock):
    cache: ResponseCache[int] = ResponseCache(ttl_ms=1_000, clock=clock)
    cache.set("k", 1)
    clock.advance(1_001)
    assert cache.get("k") is None


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        ResponseCache(ttl_ms=0)
