"""
Tests for the TTL cache
"""
from datetime import timedelta

import pytest

from cds_hooks.core.cache import TTLCache


@pytest.fixture
def cache(fake_clock):
    return TTLCache(30, clock=fake_clock)


def test_fresh_value_is_returned(cache, fake_clock):
    """Test a value is served until it reaches the TTL"""
    cache.set("key", [1, 2])
    fake_clock.advance(29)

    assert cache.get("key") == [1, 2]
    assert "key" in cache


def test_expired_value_is_hidden_but_peekable(cache, fake_clock):
    """Test expired entries are not served by get but remain for stale fallback"""
    cache.set("key", "value")
    fake_clock.advance(30)

    assert cache.get("key") is None
    assert "key" not in cache
    assert cache.peek("key") == "value"
    assert cache.age("key") == timedelta(seconds=30)


def test_prune_drops_only_expired(cache, fake_clock):
    """Test prune removes expired entries and reports how many"""
    cache.set("old", 1)
    fake_clock.advance(20)
    cache.set("new", 2)
    fake_clock.advance(15)

    assert cache.prune() == 1
    assert len(cache) == 1
    assert cache.get("new") == 2
    assert cache.peek("old") is None


def test_invalidate_single_key_and_all(cache):
    """Test invalidate with and without a key"""
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.peek("a") is None
    assert cache.get("b") == 2

    cache.invalidate()
    assert len(cache) == 0


def test_set_replaces_whole_entry(cache, fake_clock):
    """Test setting a key again resets its age"""
    cache.set("key", "first")
    fake_clock.advance(25)
    cache.set("key", "second")
    fake_clock.advance(25)

    assert cache.get("key") == "second"


def test_ttl_accepts_timedelta(fake_clock):
    cache = TTLCache(timedelta(minutes=5), clock=fake_clock)
    cache.set("services", [])
    fake_clock.advance(299)
    assert cache.is_fresh("services")
    fake_clock.advance(1)
    assert not cache.is_fresh("services")


def test_age_of_missing_key_is_none(cache):
    assert cache.age("missing") is None
