"""Tests for the per-conversation TTL caches."""

import pytest

from contextkeeper.agent.cache import HistoryCache, TTLCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache:
    def test_miss(self):
        assert TTLCache(5.0).get("c1") is None

    def test_hit_returns_same_reference(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        value = ["m1"]
        cache.set("c1", value)
        clock.advance(4.9)
        assert cache.get("c1") is value

    def test_expires_at_ttl(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("c1", ["m1"])
        clock.advance(5.0)
        assert cache.get("c1") is None
        assert len(cache) == 0

    def test_entries_expire_independently(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("c1", 1)
        clock.advance(3)
        cache.set("c2", 2)
        clock.advance(3)
        assert cache.get("c1") is None
        assert cache.get("c2") == 2

    def test_invalidate_and_clear(self):
        cache = TTLCache(5.0)
        cache.set("c1", 1)
        cache.set("c2", 2)
        cache.invalidate("c1")
        assert "c1" not in cache
        assert "c2" in cache
        cache.clear()
        assert len(cache) == 0

    def test_last_write_wins(self):
        cache = TTLCache(5.0)
        cache.set("c1", "first")
        cache.set("c1", "second")
        assert cache.get("c1") == "second"

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            TTLCache(0)


class TestHistoryCache:
    def test_append_to_live_entry(self):
        cache = HistoryCache(5.0)
        cache.set("c1", ["m1"])
        assert cache.append("c1", "m2") is True
        assert cache.get("c1") == ["m1", "m2"]

    def test_append_without_entry(self):
        cache = HistoryCache(5.0)
        assert cache.append("c1", "m1") is False
        assert cache.get("c1") is None

    def test_append_after_expiry(self):
        clock = FakeClock()
        cache = HistoryCache(5.0, clock=clock)
        cache.set("c1", ["m1"])
        clock.advance(6)
        assert cache.append("c1", "m2") is False
