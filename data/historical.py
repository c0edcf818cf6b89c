"""
Historical Loader — Seeds the BarCache at startup.

Responsibilities:
- Restore the persisted snapshot (missing/corrupt -> cold cache)
- Skip the network when the cache is already warm
- Otherwise fetch 1m, 5m, 15m and 1h candles for every symbol
- Persist a merged snapshot after a successful backfill
"""

from __future__ import annotations
import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, List, Sequence
from exchange.errors import PersistenceError, RateLimitError
from exchange.models import Candle, Symbol, Timeframe
import logging

if TYPE_CHECKING:
    from config import HistoryConfig
    from data.bar_cache import BarCache
    from exchange.kucoin_rest import KuCoinRestClient
    from storage.database import Database

logger = logging.getLogger(__name__)


def parse_kucoin_candles(rows: Sequence[Sequence[Any]]) -> List[Candle]:
    """
    Parse raw KuCoin candle rows into Candle objects, oldest first.
    KuCoin format: [time(s), open, close, high, low, volume, turnover]
    """
    candles = []
    for row in rows:
        try:
            candles.append(Candle(
                timestamp=int(row[0]) * 1000,
                open=Decimal(str(row[1])),
                close=Decimal(str(row[2])),
                high=Decimal(str(row[3])),
                low=Decimal(str(row[4])),
                volume=Decimal(str(row[5])),
            ))
        except (IndexError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"[HISTORY] Bad candle row: {row}: {e}")

    candles = [c for c in candles if c.close.is_finite()]
    candles.sort(key=lambda c: c.timestamp)
    return candles


class HistoricalLoader:
    """One-shot backfill + disk snapshot for the BarCache."""

    def __init__(
        self,
        cache: "BarCache",
        client: "KuCoinRestClient",
        db: "Database",
        config: "HistoryConfig",
        snapshot_key: str = "historical_ohlc",
    ):
        self.cache = cache
        self.client = client
        self.db = db
        self.config = config
        self.snapshot_key = snapshot_key
        self._stopped = False

    def stop(self):
        """Abandon an in-flight backfill at the next request boundary."""
        self._stopped = True

    async def run(self) -> bool:
        """Restore, check warmth, backfill if cold. True if the network was used."""
        self.restore_snapshot()

        if not self.needs_backfill():
            logger.info(f"[HISTORY] Found cached historical data ({self.config.warm_timeframe.value} bars)")
            return False

        logger.info("[HISTORY] Cache is cold, fetching historical data from KuCoin...")
        await self.backfill()
        return True

    def needs_backfill(self) -> bool:
        tf = self.config.warm_timeframe
        threshold = self.config.warm_threshold
        for symbol in self.cache.symbols[:self.config.sample_size]:
            if len(self.cache.get_bars(symbol, tf, threshold)) >= threshold:
                return False
        return True

    async def backfill(self) -> int:
        """Fetch every symbol/timeframe. Returns the number of series loaded."""
        loaded = 0

        for symbol in self.cache.symbols:
            logger.info(f"[HISTORY] Fetching all timeframes for {symbol.value.upper()}...")

            for tf in self.cache.timeframes:
                await asyncio.sleep(self.config.request_delay_sec)
                if self._stopped:
                    logger.info(f"[HISTORY] Backfill interrupted after {loaded} timeframes")
                    return loaded
                try:
                    candles = await self._fetch(symbol, tf)
                except RateLimitError:
                    logger.warning(f"[HISTORY] Rate limited on {symbol.value} {tf.value}, skipping")
                    continue
                except Exception as e:
                    logger.error(f"[HISTORY] Error fetching {symbol.value} {tf.value}: {e}")
                    continue

                if candles:
                    self.cache.load_historical_bars(symbol, tf, candles)
                    loaded += 1
                else:
                    logger.warning(f"[HISTORY] {symbol.value} {tf.value}: no candle data")

        logger.info(f"[HISTORY] Historical data fetch complete: {loaded} timeframes loaded")

        if loaded > 0:
            self.save_snapshot()
        return loaded

    async def _fetch(self, symbol: Symbol, tf: Timeframe) -> List[Candle]:
        start_at = int(time.time()) - tf.history_count * tf.seconds
        rows = await self.client.get_candles(symbol.kucoin_pair, tf.kucoin_type, start_at=start_at)
        return parse_kucoin_candles(rows)

    # ==================== Snapshot ====================

    def save_snapshot(self) -> bool:
        document: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        for symbol in self.cache.symbols:
            series = {}
            for tf in self.cache.timeframes:
                bars = self.cache.get_bars(symbol, tf, self.cache.max_bars)
                if bars:
                    series[tf.value] = [bar.to_dict() for bar in bars]
            document[symbol.value] = series

        try:
            self.db.save_snapshot(self.snapshot_key, document)
        except PersistenceError as e:
            logger.error(f"[HISTORY] Error saving snapshot: {e}")
            return False
        logger.info("[HISTORY] Historical data saved to disk")
        return True

    def restore_snapshot(self) -> bool:
        """Load the snapshot into the cache. False means a fresh fetch is needed."""
        try:
            document = self.db.load_snapshot(self.snapshot_key)
        except PersistenceError as e:
            logger.error(f"[HISTORY] Error loading snapshot: {e}")
            return False

        if document is None:
            logger.info("[HISTORY] No cached data found, will fetch fresh")
            return False

        loaded = 0
        for symbol in self.cache.symbols:
            series = document.get(symbol.value)
            if not isinstance(series, dict):
                continue
            for tf in self.cache.timeframes:
                rows = series.get(tf.value)
                if not isinstance(rows, list):
                    continue
                candles = []
                for row in rows:
                    try:
                        candles.append(Candle.from_dict(row))
                    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                        logger.debug(f"[HISTORY] Skipping bad snapshot row {row}: {e}")
                if candles:
                    self.cache.load_historical_bars(symbol, tf, candles)
                    loaded += 1

        logger.info(f"[HISTORY] Loaded {loaded} timeframe caches from disk")
        return loaded > 0
