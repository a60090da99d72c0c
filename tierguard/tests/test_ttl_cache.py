import pytest

from tierguard.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_get_or_fetch_caches_until_ttl(clock):
    cache = TTLCache(ttl_seconds=300, clock=clock)
    calls = []

    def fetch():
        calls.append(1)
        return {"v": len(calls)}

    assert cache.get_or_fetch(("usage", "u1"), fetch) == {"v": 1}
    clock.now += 299
    assert cache.get_or_fetch(("usage", "u1"), fetch) == {"v": 1}
    clock.now += 1
    assert cache.get_or_fetch(("usage", "u1"), fetch) == {"v": 2}
    assert len(calls) == 2


def test_none_cached_only_when_requested(clock):
    cache = TTLCache(clock=clock)
    calls = []

    def fetch():
        calls.append(1)
        return None

    cache.get_or_fetch(("feature", "x"), fetch)
    cache.get_or_fetch(("feature", "x"), fetch)
    assert len(calls) == 2

    cache.get_or_fetch(("feature", "y"), fetch, cache_none=True)
    cache.get_or_fetch(("feature", "y"), fetch, cache_none=True)
    assert len(calls) == 3
    assert cache.get(("feature", "y")) is None


def test_fetch_error_propagates_and_keeps_nothing(clock):
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set(("usage", "u1"), "stale")
    clock.now += 11

    def boom():
        raise RuntimeError("store down")

    with pytest.raises(RuntimeError):
        cache.get_or_fetch(("usage", "u1"), boom)
    assert len(cache) == 0


def test_invalidate_entity_drops_every_kind(clock):
    cache = TTLCache(clock=clock)
    cache.set(("usage", "u1"), 1)
    cache.set(("debug", "u1"), 2)
    cache.set(("usage", "u2"), 3)

    assert cache.invalidate_entity("u1") == 2
    assert cache.get(("usage", "u2")) == 3
    assert cache.get(("usage", "u1")) is None


def test_invalidate_kind_and_single_key(clock):
    cache = TTLCache(clock=clock)
    cache.set(("feature", "a"), 1)
    cache.set(("feature", "b"), 2)
    cache.set(("usage", "a"), 3)

    assert cache.invalidate(("feature", "a")) is True
    assert cache.invalidate(("feature", "a")) is False
    assert cache.invalidate_kind("feature") == 1
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_invalidate_entity_limited_to_kinds(clock):
    cache = TTLCache(clock=clock)
    cache.set(("usage", "voice_clone"), 1)
    cache.set(("feature", "voice_clone"), 2)

    assert cache.invalidate_entity("voice_clone", kinds=("usage",)) == 1
    assert cache.get(("feature", "voice_clone")) == 2


@pytest.mark.parametrize(
    "invalidate",
    [
        lambda cache: cache.invalidate(("usage", "u1")),
        lambda cache: cache.invalidate_entity("u1", kinds=("usage",)),
        lambda cache: cache.invalidate_kind("usage"),
        lambda cache: cache.clear(),
    ],
)
def test_fetch_overlapping_invalidation_is_not_stored(clock, invalidate):
    cache = TTLCache(clock=clock)
    values = iter(["before-write", "after-write"])

    def fetch_racing_a_write():
        value = next(values)
        invalidate(cache)  # write lands after the read, before the store
        return value

    assert cache.get_or_fetch(("usage", "u1"), fetch_racing_a_write) == "before-write"
    assert cache.get(("usage", "u1")) is None
    assert cache.get_or_fetch(("usage", "u1"), lambda: next(values)) == "after-write"
    assert cache.get(("usage", "u1")) == "after-write"


def test_invalidating_another_key_does_not_block_store(clock):
    cache = TTLCache(clock=clock)

    def fetch():
        cache.invalidate(("usage", "u2"))
        return "fresh"

    cache.get_or_fetch(("usage", "u1"), fetch)
    assert cache.get(("usage", "u1")) == "fresh"
