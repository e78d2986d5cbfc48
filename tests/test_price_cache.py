"""
Pytest tests for PriceCache: TTL, default policy, strict mode, buckets and
coalescing of concurrent lookups.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakePriceSource


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _cache(source, **kwargs):
    from backend_taxbot.core.retry import RetryPolicy
    from backend_taxbot.pricing.price_cache import PriceCache

    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=1, base_delay_sec=0.0))
    return PriceCache(source, **kwargs)


def test_second_lookup_within_ttl_hits_cache():
    source = FakePriceSource({"X": 2.0})
    cache = _cache(source)

    async def run():
        return await cache.get_price("X"), await cache.get_price("X")

    assert asyncio.run(run()) == (2.0, 2.0)
    assert source.calls == ["X"]
    assert cache.hits == 1
    assert cache.misses == 1
    assert cache.peek("X") == 2.0


def test_expired_entry_is_refreshed():
    source = FakePriceSource({"X": 2.0})
    clock = Clock()
    cache = _cache(source, ttl_sec=60, clock=clock)

    asyncio.run(cache.get_price("X"))
    clock.now += 59
    assert cache.peek("X") == 2.0
    clock.now += 1
    assert cache.peek("X") is None

    source.prices["X"] = 3.0
    assert asyncio.run(cache.get_price("X")) == 3.0
    assert source.calls == ["X", "X"]


def test_unknown_asset_returns_default_and_is_not_cached():
    """Unpriced assets get the default; failures never create an entry."""
    source = FakePriceSource({})
    cache = _cache(source, default_price=0.0)

    assert asyncio.run(cache.get_price("NOPE")) == 0.0
    assert len(cache) == 0
    assert asyncio.run(cache.get_price("NOPE")) == 0.0
    assert source.calls == ["NOPE", "NOPE"]


def test_source_failure_returns_default():
    source = FakePriceSource({"X": 2.0}, fail=True)
    cache = _cache(source)
    assert asyncio.run(cache.get_price("X")) == 0.0
    assert len(cache) == 0


def _jupiter_cache(body, **kwargs):
    import httpx

    from backend_taxbot.pricing.sources import JupiterPriceSource

    def handler(request):
        return httpx.Response(200, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _cache(JupiterPriceSource("https://price.test/v2", http_client=client), **kwargs)


@pytest.mark.parametrize(
    "body",
    [
        {"data": [{"id": "X", "price": "1"}]},
        [{"id": "X", "price": "1"}],
        {"data": {"X": "1"}},
        "not json object",
    ],
)
def test_malformed_price_payload_returns_default(body):
    cache = _jupiter_cache(body)
    assert asyncio.run(cache.get_price("X")) == 0.0
    assert len(cache) == 0


def test_unexpected_source_error_returns_default():
    class BrokenSource:
        async def get_unit_price(self, asset_id, as_of=None):
            raise AttributeError("'list' object has no attribute 'get'")

    assert asyncio.run(_cache(BrokenSource()).get_price("X")) == 0.0


def test_malformed_price_payload_is_unresolved_in_strict_mode():
    from backend_taxbot.core.exceptions import PriceUnresolved

    cache = _jupiter_cache({"data": [{"id": "X", "price": "1"}]}, strict=True)
    with pytest.raises(PriceUnresolved):
        asyncio.run(cache.get_price("X"))



def test_strict_mode_raises_price_unresolved():
    from backend_taxbot.core.exceptions import PriceUnresolved

    cache = _cache(FakePriceSource({}), strict=True)
    with pytest.raises(PriceUnresolved) as exc_info:
        asyncio.run(cache.get_price("NOPE"))
    assert exc_info.value.asset_id == "NOPE"


def test_historical_buckets_do_not_share_entries():
    source = FakePriceSource({"X": 2.0})
    cache = _cache(source, historical=True, bucket_sec=3600)

    async def run():
        await cache.get_price("X", as_of=7200)
        await cache.get_price("X", as_of=7200 + 3599)
        await cache.get_price("X", as_of=7200 + 3600)

    asyncio.run(run())
    assert cache.key_for("X", 7200) == ("X", 2)
    assert source.calls == ["X", "X"]
    assert len(cache) == 2


def test_as_of_ignored_without_historical_pricing():
    cache = _cache(FakePriceSource({"X": 2.0}))
    assert cache.key_for("X", 123456) == ("X", None)


def test_concurrent_lookups_share_one_fetch():
    class SlowSource(FakePriceSource):
        async def get_unit_price(self, asset_id, as_of=None):
            await asyncio.sleep(0.01)
            return await super().get_unit_price(asset_id, as_of)

    source = SlowSource({"X": 5.0})
    cache = _cache(source)

    async def run():
        return await asyncio.gather(*(cache.get_price("X") for _ in range(5)))

    assert asyncio.run(run()) == [5.0] * 5
    assert source.calls == ["X"]


def test_stats():
    cache = _cache(FakePriceSource({"X": 1.0}))

    async def run():
        await cache.get_price("X")
        await cache.get_price("X")

    asyncio.run(run())
    assert cache.stats() == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 50.0}
