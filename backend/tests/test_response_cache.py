"""Response cache: TTL boundaries, key stability, failures never cached."""

from __future__ import annotations

import pytest

from conftest import FakeClock
from football_api.cache import ResponseCache, make_cache_key
from football_api.client import APIFootballTransportError


class CountingFetch:
    def __init__(self, payload=None, error=None):
        self.calls = 0
        self.payload = payload if payload is not None else {"response": [1]}
        self.error = error

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


def test_key_is_independent_of_param_order():
    assert make_cache_key("/players/squads", {"team": 1, "season": 2022}) == make_cache_key(
        "/players/squads", {"season": 2022, "team": 1}
    )


def test_key_distinguishes_endpoint_and_values():
    assert make_cache_key("/players/squads", {"team": 1}) != make_cache_key("/players/squads", {"team": 2})
    assert make_cache_key("/players/squads", {"team": 1}) != make_cache_key("/teams", {"team": 1})


@pytest.mark.asyncio
async def test_hit_just_before_expiry_does_not_refetch():
    clock = FakeClock()
    cache = ResponseCache(clock)
    fetch = CountingFetch()

    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)
    clock.advance(99.999)
    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)

    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_call_after_expiry_refetches():
    clock = FakeClock()
    cache = ResponseCache(clock)
    fetch = CountingFetch()

    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)
    clock.advance(100.001)
    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)

    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_entry_is_expired_exactly_at_expiry_time():
    clock = FakeClock()
    cache = ResponseCache(clock)
    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, CountingFetch())

    clock.advance(100)

    assert cache.get("/players/squads", {"team": 1}) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_reordered_params_hit_same_entry():
    clock = FakeClock()
    cache = ResponseCache(clock)
    fetch = CountingFetch()

    await cache.get_or_fetch("/players/squads", {"team": 1, "page": 2}, 100, fetch)
    await cache.get_or_fetch("/players/squads", {"page": 2, "team": 1}, 100, fetch)

    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached():
    clock = FakeClock()
    cache = ResponseCache(clock)
    failing = CountingFetch(error=APIFootballTransportError("down", endpoint="/players/squads"))

    with pytest.raises(APIFootballTransportError):
        await cache.get_or_fetch("/players/squads", {"team": 1}, 100, failing)
    assert len(cache) == 0

    ok = CountingFetch(payload={"response": ["fresh"]})
    assert await cache.get_or_fetch("/players/squads", {"team": 1}, 100, ok) == {"response": ["fresh"]}
    assert ok.calls == 1


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    clock = FakeClock()
    cache = ResponseCache(clock)
    fetch = CountingFetch()

    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)
    cache.invalidate("/players/squads", {"team": 1})
    await cache.get_or_fetch("/players/squads", {"team": 1}, 100, fetch)

    assert fetch.calls == 2
