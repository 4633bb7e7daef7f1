"""Unit tests for the in-memory TTLCache."""

import threading

import pytest

from usage_guard.utils.simple_cache import TTLCache


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache: TTLCache[int] = TTLCache(ttl_seconds=10)

    assert cache.get("missing") is None
    cache.set("k", 1)
    assert cache.get("k") == 1

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["entries"] == 1


def test_entries_expire_after_ttl() -> None:
    fake_time = FakeTime()
    cache: TTLCache[str] = TTLCache(ttl_seconds=5, clock=fake_time.time)

    cache.set("k", "v")
    fake_time.advance(5)
    assert cache.get("k") == "v"

    fake_time.advance(0.1)
    assert cache.get("k") is None
    assert cache.stats()["evictions"] == 1


def test_per_entry_ttl_overrides_default() -> None:
    fake_time = FakeTime()
    cache: TTLCache[str] = TTLCache(ttl_seconds=100, clock=fake_time.time)

    cache.set("short", "v", ttl_seconds=1)
    cache.set("long", "v")
    fake_time.advance(2)

    assert cache.get("short") is None
    assert cache.get("long") == "v"


def test_none_ttl_never_expires() -> None:
    fake_time = FakeTime()
    cache: TTLCache[str] = TTLCache(ttl_seconds=None, clock=fake_time.time)

    cache.set("k", "v")
    fake_time.advance(10**9)
    assert cache.get("k") == "v"


def test_expired_entries_are_swept_every_n_writes() -> None:
    fake_time = FakeTime()
    cache: TTLCache[int] = TTLCache(ttl_seconds=1, sweep_every=8, clock=fake_time.time)

    for i in range(5):
        cache.set(f"old-{i}", i)
    fake_time.advance(2)
    cache.set("new-0", 0)
    cache.set("new-1", 1)

    assert len(cache) == 7
    assert cache.get("old-0") is None

    cache.set("new-2", 2)

    assert len(cache) == 3
    assert cache.stats()["evictions"] == 5


def test_invalid_sweep_interval() -> None:
    with pytest.raises(ValueError):
        TTLCache(sweep_every=0)


def test_lru_eviction_drops_least_recently_used() -> None:
    cache: TTLCache[int] = TTLCache(ttl_seconds=None, max_entries=2)

    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1  # "a" becomes most recent
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_clear_resets_entries_and_counters() -> None:
    cache: TTLCache[int] = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1

    cache.clear()
    assert len(cache) == 0
    assert cache.stats()["hits"] == 0


def test_invalid_max_entries() -> None:
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)


def test_thread_safe_concurrent_sets() -> None:
    cache: TTLCache[int] = TTLCache(ttl_seconds=None, max_entries=None)

    def worker(offset: int) -> None:
        for i in range(200):
            cache.set(f"{offset}-{i}", i)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 800
