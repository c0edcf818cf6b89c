import asyncio

import pytest

from config import FallbackConfig
from conftest import D
from data.fallback import FallbackPoller
from exchange.errors import FeedConnectionError, RateLimitError
from exchange.models import Source, Symbol


class FakeCoinGecko:
    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.requests = []

    async def get_prices(self, coin_ids, vs_currency="usd"):
        self.requests.append(list(coin_ids))
        if self.error is not None:
            raise self.error
        return dict(self.prices)


def all_prices(skip=()):
    return {s.coingecko_id: D(100 + i) for i, s in enumerate(Symbol) if s not in skip}


@pytest.mark.asyncio
async def test_one_batched_request_updates_every_symbol(cache):
    client = FakeCoinGecko(all_prices())
    poller = FallbackPoller(cache, client, FallbackConfig())

    assert await poller.poll_once() == len(Symbol)
    assert len(client.requests) == 1
    assert sorted(client.requests[0]) == sorted(s.coingecko_id for s in Symbol)

    btc = cache.get_latest_price(Symbol.BTC)
    assert btc.price == D(100)
    assert btc.source == Source.FALLBACK


@pytest.mark.asyncio
async def test_missing_price_records_error(cache):
    prices = all_prices(skip=[Symbol.DOT])
    prices[Symbol.LINK.coingecko_id] = D(0)
    poller = FallbackPoller(cache, FakeCoinGecko(prices), FallbackConfig())

    assert await poller.poll_once() == len(Symbol) - 2
    assert cache.get_latest_price(Symbol.DOT) is None
    assert cache.get_error_count(Symbol.DOT) == 1
    assert cache.get_error_count(Symbol.LINK) == 1
    assert cache.get_error_count(Symbol.BTC) == 0


@pytest.mark.asyncio
async def test_rate_limit_skips_cycle_quietly(cache):
    client = FakeCoinGecko(error=RateLimitError("coingecko", 30))
    poller = FallbackPoller(cache, client, FallbackConfig())

    assert await poller.poll_once() == 0
    assert cache.get_error_count(Symbol.BTC) == 0

    # Not counted as a fetch, so the next cycle is not held back by the gap guard
    client.error = None
    client.prices = all_prices()
    assert await poller.poll_once() == len(Symbol)
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_transport_error_records_errors(cache):
    poller = FallbackPoller(cache, FakeCoinGecko(error=FeedConnectionError("boom")), FallbackConfig())

    assert await poller.poll_once() == 0
    assert all(cache.get_error_count(s) == 1 for s in Symbol)
    assert cache.get_latest_price(Symbol.ETH) is None


@pytest.mark.asyncio
async def test_minimum_gap_guard(cache):
    client = FakeCoinGecko(all_prices())
    poller = FallbackPoller(cache, client, FallbackConfig(min_gap_sec=60))

    await poller.poll_once()
    assert await poller.poll_once() == 0
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_loop_runs_until_stopped(cache):
    client = FakeCoinGecko(all_prices())
    config = FallbackConfig(interval_sec=0.01, min_gap_sec=0, initial_delay_sec=0)
    poller = FallbackPoller(cache, client, config)

    task = asyncio.create_task(poller.start())
    await asyncio.sleep(0.1)
    await poller.stop()
    await asyncio.wait_for(task, timeout=1)

    assert len(client.requests) >= 2


@pytest.mark.asyncio
async def test_disabled_poller_never_requests(cache):
    client = FakeCoinGecko(all_prices())
    poller = FallbackPoller(cache, client, FallbackConfig(enabled=False))
    await poller.start()
    assert client.requests == []


@pytest.mark.asyncio
async def test_stop_before_start_is_sticky(cache):
    client = FakeCoinGecko(all_prices())
    config = FallbackConfig(interval_sec=0.01, min_gap_sec=0, initial_delay_sec=0)
    poller = FallbackPoller(cache, client, config)

    await poller.stop()
    await asyncio.wait_for(poller.start(), timeout=1)

    assert client.requests == []
