from __future__ import annotations

import pytest

from core.lru_cache import LRUCache


def test_touched_entry_survives_and_least_recent_is_evicted():
    cache = LRUCache(capacity=2, ttl_seconds=0)

    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1
    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_size_never_exceeds_capacity_and_victims_are_oldest():
    cache = LRUCache(capacity=3)

    for i in range(10):
        cache.put(i, i * 10)
        assert len(cache) <= 3

    assert cache.keys() == [7, 8, 9]
    for evicted in range(7):
        assert evicted not in cache


def test_get_returns_value_just_put():
    cache = LRUCache(capacity=5)
    cache.put("k", {"name": "x"})
    assert cache.get("k") == {"name": "x"}


def test_get_missing_returns_default():
    cache = LRUCache(capacity=1)
    assert cache.get("nope") is None
    assert cache.get("nope", "fallback") == "fallback"


def test_overwrite_moves_key_to_most_recent_without_evicting():
    cache = LRUCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)

    assert len(cache) == 2
    assert cache.keys() == ["b", "a"]

    cache.put("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 10


def test_entry_expires_once_ttl_has_elapsed(clock):
    cache = LRUCache(capacity=4, ttl_seconds=30, clock=clock)
    cache.put("user", "profile")

    clock.advance(29)
    assert "user" in cache
    # Peeking does not refresh; the next get at T+30 must miss.
    clock.advance(1)
    assert cache.get("user") is None
    assert "user" not in cache
    assert len(cache) == 0


def test_get_refreshes_access_time(clock):
    cache = LRUCache(capacity=4, ttl_seconds=30, clock=clock)
    cache.put("user", "profile")

    clock.advance(20)
    assert cache.get("user") == "profile"
    clock.advance(20)
    assert cache.get("user") == "profile"
    clock.advance(30)
    assert cache.get("user") is None


def test_expired_entries_are_removed_lazily(clock):
    cache = LRUCache(capacity=4, ttl_seconds=5, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)

    clock.advance(100)
    # Nothing is swept until a lookup touches the entry.
    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.keys() == ["b"]


def test_zero_ttl_never_expires(clock):
    cache = LRUCache(capacity=1, ttl_seconds=0, clock=clock)
    cache.put("a", 1)
    clock.advance(10 ** 9)
    assert cache.get("a") == 1


def test_delete_is_idempotent_and_keeps_order_consistent():
    cache = LRUCache(capacity=4)
    for key in "abcd":
        cache.put(key, key.upper())

    cache.delete("b")
    cache.delete("b")
    cache.delete("missing")
    assert cache.keys() == ["a", "c", "d"]

    cache.delete("a")
    cache.delete("d")
    assert cache.keys() == ["c"]

    cache.put("e", "E")
    assert cache.keys() == ["c", "e"]


def test_clear_resets_everything():
    cache = LRUCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.clear()

    assert len(cache) == 0
    assert cache.keys() == []
    cache.put("c", 3)
    assert cache.keys() == ["c"]


@pytest.mark.parametrize("capacity, ttl", [(0, 0), (-1, 0), (1, -5)])
def test_invalid_configuration_is_rejected(capacity, ttl):
    with pytest.raises(ValueError):
        LRUCache(capacity=capacity, ttl_seconds=ttl)
