"""
Bar Cache — Rolling multi-timeframe OHLC history per symbol.
Fed by the WebSocket feed, the REST fallback and historical backfill.
Pure state: no I/O, no awaits, so every call is atomic on the event loop.
"""

from __future__ import annotations
import time
from collections import deque
from decimal import Decimal
from itertools import islice
from typing import Any, Deque, Dict, Iterable, List, Optional
from exchange.models import Candle, LatestTick, Source, Symbol, Timeframe
import logging

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _coerce(enum_cls, value):
    """Map a plain string onto its enum member; None when unknown."""
    try:
        return enum_cls(value)
    except ValueError:
        return None


class BarCache:
    """
    Maintains completed candles (FIFO ring, oldest evicted first) plus
    one in-progress candle for every (symbol, timeframe) pair.
    """

    def __init__(
        self,
        max_bars: int = 500,
        symbols: Optional[Iterable[Symbol]] = None,
        timeframes: Optional[Iterable[Timeframe]] = None,
    ):
        self.max_bars = max_bars
        self.symbols: List[Symbol] = list(symbols or Symbol)
        self.timeframes: List[Timeframe] = list(timeframes or Timeframe)

        # symbol -> timeframe -> completed candles (oldest first)
        self._bars: Dict[Symbol, Dict[Timeframe, Deque[Candle]]] = {}
        # symbol -> timeframe -> in-progress candle
        self._current: Dict[Symbol, Dict[Timeframe, Optional[Candle]]] = {}
        self._last_tick: Dict[Symbol, Optional[LatestTick]] = {}
        self._errors: Dict[Symbol, int] = {}

        for symbol in self.symbols:
            self._bars[symbol] = {tf: deque(maxlen=max_bars) for tf in self.timeframes}
            self._current[symbol] = {tf: None for tf in self.timeframes}
            self._last_tick[symbol] = None
            self._errors[symbol] = 0

    # ==================== Writes (ingestion only) ====================

    def update_tick(
        self,
        symbol: Symbol,
        price: Decimal,
        source: Source,
        timestamp: Optional[int] = None,
    ):
        """
        Apply one price observation to every timeframe.

        A tick in a new bucket closes the current candle into history and
        opens a fresh one. A late tick from a slow source still updates the
        current candle; past candles are never reordered.
        """
        requested = symbol
        symbol = _coerce(Symbol, symbol)
        if symbol not in self._bars:
            logger.debug(f"[CACHE] Ignoring tick for unknown symbol {requested!r}")
            return

        now = timestamp if timestamp is not None else _now_ms()
        self._last_tick[symbol] = LatestTick(price=price, timestamp=now, source=source)

        for tf in self.timeframes:
            self._update_candle(symbol, tf, price, now)

    def _update_candle(self, symbol: Symbol, tf: Timeframe, price: Decimal, ts: int):
        bucket = tf.bucket_start(ts)
        current = self._current[symbol][tf]

        if current is None or bucket > current.timestamp:
            if current is not None:
                # deque(maxlen) drops the oldest when full
                self._bars[symbol][tf].append(current)
            self._current[symbol][tf] = Candle(
                timestamp=bucket,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=Decimal("0"),
            )
        else:
            # Same bucket, or a late tick from an older one: history is never reordered
            current.high = max(current.high, price)
            current.low = min(current.low, price)
            current.close = price

    def load_historical_bars(self, symbol: Symbol, timeframe: Timeframe, bars: List[Candle]):
        """
        Replace stored history for (symbol, timeframe) with the most recent
        max_bars of `bars` (oldest first). The new ring is built aside and
        swapped in with a single assignment.
        """
        symbol, timeframe = _coerce(Symbol, symbol), _coerce(Timeframe, timeframe)
        if symbol not in self._bars or timeframe not in self._bars[symbol]:
            logger.debug("[CACHE] Ignoring history for unknown symbol/timeframe")
            return

        self._bars[symbol][timeframe] = deque(bars[-self.max_bars:], maxlen=self.max_bars)

        if bars:
            last = bars[-1]
            self._last_tick[symbol] = LatestTick(
                price=last.close,
                timestamp=last.timestamp or _now_ms(),
                source=Source.HISTORICAL,
            )

        logger.info(f"[CACHE] Loaded {len(bars)} {timeframe.value} bars for {symbol.value.upper()}")

    def record_error(self, symbol: Symbol):
        symbol = _coerce(Symbol, symbol)
        if symbol in self._errors:
            self._errors[symbol] += 1

    # ==================== Reads ====================

    def get_bars(self, symbol: Symbol, timeframe: Timeframe, count: int = 100) -> List[Candle]:
        """Last `count` completed candles, oldest first. Empty for unknown keys."""
        ring = self._bars.get(symbol, {}).get(timeframe)
        if not ring or count <= 0:
            return []
        start = max(len(ring) - count, 0)
        return list(islice(ring, start, None))

    def get_current_candle(self, symbol: Symbol, timeframe: Timeframe) -> Optional[Candle]:
        return self._current.get(symbol, {}).get(timeframe)

    def get_latest_price(self, symbol: Symbol) -> Optional[LatestTick]:
        return self._last_tick.get(symbol)

    def get_stale_symbols(self, max_age_ms: int = 120000, now: Optional[int] = None) -> List[Symbol]:
        """Symbols with no tick at all, or none within max_age_ms."""
        now = now if now is not None else _now_ms()
        stale = []
        for symbol in self.symbols:
            tick = self._last_tick[symbol]
            if tick is None or (now - tick.timestamp) > max_age_ms:
                stale.append(symbol)
        return stale

    def get_error_count(self, symbol: Symbol) -> int:
        return self._errors.get(symbol, 0)

    def get_metrics(self) -> Dict[str, Any]:
        """Read-only monitoring snapshot."""
        metrics: Dict[str, Any] = {
            "symbols": {},
            "total_bars": 0,
            "generated_at": _now_ms(),
        }

        for symbol in self.symbols:
            tick = self._last_tick[symbol]
            bars = {tf.value: len(self._bars[symbol][tf]) for tf in self.timeframes}
            metrics["symbols"][symbol.value] = {
                "last_price": tick.price if tick else None,
                "last_tick": tick.timestamp if tick else None,
                "source": tick.source.value if tick else None,
                "errors": self._errors[symbol],
                "bars": bars,
            }
            metrics["total_bars"] += sum(bars.values())

        return metrics
