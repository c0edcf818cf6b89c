import asyncio

import pytest

from config import BotConfig
from exchange.errors import FeedConnectionError
from exchange.models import Symbol
from main import Bot


class FakeKuCoin:
    def __init__(self, on_candles=None):
        self.on_candles = on_candles
        self.candle_requests = 0
        self.token_requests = 0

    async def get_candles(self, symbol, candle_type, start_at=None, end_at=None):
        self.candle_requests += 1
        if self.on_candles is not None:
            await self.on_candles()
        return []

    async def get_ws_token(self):
        self.token_requests += 1
        raise FeedConnectionError("offline")


class FakeCoinGecko:
    def __init__(self):
        self.requests = 0

    async def get_prices(self, coin_ids, vs_currency="usd"):
        self.requests += 1
        return {}


def make_bot(tmp_path, feeds=True):
    config = BotConfig()
    config.storage.db_path = str(tmp_path / "data" / "bot.db")
    config.cache.symbols = [Symbol.BTC]
    config.history.request_delay_sec = 0
    config.fallback.initial_delay_sec = 0
    config.feed.enabled = feeds
    config.fallback.enabled = feeds

    bot = Bot(config)
    kucoin = FakeKuCoin()
    coingecko = FakeCoinGecko()
    bot.history.client = kucoin
    bot.feed.client = kucoin
    bot.fallback.client = coingecko
    return bot, kucoin, coingecko


@pytest.mark.asyncio
async def test_start_after_stop_does_nothing(tmp_path):
    bot, kucoin, coingecko = make_bot(tmp_path)

    await bot.stop()
    await asyncio.wait_for(bot.start(), timeout=1)

    assert kucoin.candle_requests == 0
    assert kucoin.token_requests == 0
    assert coingecko.requests == 0
    assert bot.db._conn is None


@pytest.mark.asyncio
async def test_shutdown_during_backfill_never_starts_feeds(tmp_path):
    bot, kucoin, coingecko = make_bot(tmp_path)
    kucoin.on_candles = bot.stop

    await asyncio.wait_for(bot.start(), timeout=1)

    # First request triggered the shutdown; the rest of the backfill was dropped
    assert kucoin.candle_requests == 1
    assert kucoin.token_requests == 0
    assert coingecko.requests == 0
    assert bot.db._conn is None


@pytest.mark.asyncio
async def test_health_loop_exits_promptly_on_stop(tmp_path):
    bot, kucoin, _ = make_bot(tmp_path, feeds=False)
    assert bot.config.strategy.health_interval_sec == 60

    task = asyncio.create_task(bot.start())
    await asyncio.sleep(0.1)
    assert not task.done()

    await bot.stop()
    await asyncio.wait_for(task, timeout=1)
    assert kucoin.candle_requests == 4
