from __future__ import annotations

from deliveryscope.adapters.ttl_cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_at_read_time() -> None:
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.store("+100_1_2", ["record"], ttl=300)

    clock.now += 299
    assert cache.fetch("+100_1_2") == ["record"]

    clock.now += 1
    assert cache.fetch("+100_1_2") is None
    assert len(cache) == 0


def test_missing_key_and_clear() -> None:
    cache = TTLCache()
    assert cache.fetch("missing") is None
    cache.store("key", [], ttl=60)
    assert cache.fetch("key") == []
    cache.clear()
    assert cache.fetch("key") is None
