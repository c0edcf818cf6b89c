"""
Data models for the Vote Signal Bot.
Uses Decimal for all price calculations — no floating point errors.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class Symbol(str, Enum):
    BTC = "btc"
    ETH = "eth"
    SOL = "sol"
    XRP = "xrp"
    ADA = "ada"
    DOGE = "doge"
    BNB = "bnb"
    LTC = "ltc"
    MATIC = "matic"
    AVAX = "avax"
    DOT = "dot"
    LINK = "link"

    @property
    def kucoin_pair(self) -> str:
        return KUCOIN_PAIRS[self]

    @property
    def coingecko_id(self) -> str:
        return COINGECKO_IDS[self]

    @classmethod
    def from_kucoin(cls, pair: str) -> Optional["Symbol"]:
        """Resolve a KuCoin pair (e.g. 'BTC-USDT') back to a Symbol."""
        return _KUCOIN_REVERSE.get(pair)


KUCOIN_PAIRS: Dict[Symbol, str] = {
    Symbol.BTC: "BTC-USDT",
    Symbol.ETH: "ETH-USDT",
    Symbol.SOL: "SOL-USDT",
    Symbol.XRP: "XRP-USDT",
    Symbol.ADA: "ADA-USDT",
    Symbol.DOGE: "DOGE-USDT",
    Symbol.BNB: "BNB-USDT",
    Symbol.LTC: "LTC-USDT",
    Symbol.MATIC: "POL-USDT",   # MATIC trades as POL on KuCoin
    Symbol.AVAX: "AVAX-USDT",
    Symbol.DOT: "DOT-USDT",
    Symbol.LINK: "LINK-USDT",
}

COINGECKO_IDS: Dict[Symbol, str] = {
    Symbol.BTC: "bitcoin",
    Symbol.ETH: "ethereum",
    Symbol.SOL: "solana",
    Symbol.XRP: "ripple",
    Symbol.ADA: "cardano",
    Symbol.DOGE: "dogecoin",
    Symbol.BNB: "binancecoin",
    Symbol.LTC: "litecoin",
    Symbol.MATIC: "matic-network",
    Symbol.AVAX: "avalanche-2",
    Symbol.DOT: "polkadot",
    Symbol.LINK: "chainlink",
}

_KUCOIN_REVERSE: Dict[str, Symbol] = {pair: sym for sym, pair in KUCOIN_PAIRS.items()}


class Timeframe(str, Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"

    @property
    def ms(self) -> int:
        return _TIMEFRAME_SECONDS[self] * 1000

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]

    @property
    def kucoin_type(self) -> str:
        return _KUCOIN_TYPES[self]

    @property
    def history_count(self) -> int:
        """Number of candles requested on backfill."""
        return _HISTORY_COUNTS[self]

    def bucket_start(self, timestamp_ms: int) -> int:
        return (timestamp_ms // self.ms) * self.ms


_TIMEFRAME_SECONDS = {
    Timeframe.M1: 60,
    Timeframe.M5: 5 * 60,
    Timeframe.M15: 15 * 60,
    Timeframe.H1: 60 * 60,
}

_KUCOIN_TYPES = {
    Timeframe.M1: "1min",
    Timeframe.M5: "5min",
    Timeframe.M15: "15min",
    Timeframe.H1: "1hour",
}

_HISTORY_COUNTS = {
    Timeframe.M1: 500,
    Timeframe.M5: 500,
    Timeframe.M15: 400,
    Timeframe.H1: 300,
}


class Source(str, Enum):
    FEED = "feed"
    FALLBACK = "fallback"
    HISTORICAL = "historical"


class Direction(Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class FeedState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    UNAVAILABLE = "UNAVAILABLE"     # Gave up after max reconnect attempts


@dataclass
class Candle:
    """Standard OHLCV candle. timestamp is the bucket start."""
    timestamp: int          # Unix ms
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        # Prices stored as strings to preserve Decimal precision
        return {
            "time": self.timestamp,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candle":
        return cls(
            timestamp=int(data["time"]),
            open=Decimal(str(data["open"])),
            high=Decimal(str(data["high"])),
            low=Decimal(str(data["low"])),
            close=Decimal(str(data["close"])),
            volume=Decimal(str(data.get("volume", 0))),
        )


@dataclass
class LatestTick:
    """Last known price for a symbol, regardless of timeframe."""
    price: Decimal
    timestamp: int          # Unix ms
    source: Source


@dataclass
class WSToken:
    """Short-lived WebSocket credential from the bullet endpoint."""
    token: str
    endpoint: str
    expires_at: Optional[int] = None    # Unix ms
