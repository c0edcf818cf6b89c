"""
Vote Signal Bot — Configuration
All tunable parameters in one place.
"""

import os
from decimal import Decimal
from dataclasses import dataclass, field
from typing import Dict, List

from exchange.models import Symbol, Timeframe


@dataclass
class Plan:
    """Timeframe weights + stop/target sizing for one trading style."""
    name: str
    timeframe_weights: Dict[Timeframe, Decimal]
    sl_multiplier: Decimal              # x ATR
    tp_multiplier: Decimal              # x ATR
    fallback_sl_pct: Decimal            # Used when ATR is too small
    fallback_tp_pct: Decimal

    def weight(self, timeframe: Timeframe) -> Decimal:
        return self.timeframe_weights.get(timeframe, Decimal("0"))


def default_plans() -> Dict[str, Plan]:
    return {
        "short": Plan(                  # Day trading, tighter stops
            name="short",
            timeframe_weights={
                Timeframe.M1: Decimal("0.4"),
                Timeframe.M5: Decimal("0.4"),
                Timeframe.M15: Decimal("0.15"),
                Timeframe.H1: Decimal("0.05"),
            },
            sl_multiplier=Decimal("1.0"),
            tp_multiplier=Decimal("1.5"),
            fallback_sl_pct=Decimal("0.02"),
            fallback_tp_pct=Decimal("0.05"),
        ),
        "mid": Plan(                    # Swing trading
            name="mid",
            timeframe_weights={
                Timeframe.M1: Decimal("0.1"),
                Timeframe.M5: Decimal("0.35"),
                Timeframe.M15: Decimal("0.35"),
                Timeframe.H1: Decimal("0.2"),
            },
            sl_multiplier=Decimal("1.5"),
            tp_multiplier=Decimal("2.0"),
            fallback_sl_pct=Decimal("0.03"),
            fallback_tp_pct=Decimal("0.08"),
        ),
        "long": Plan(                   # Position trading, wider stops
            name="long",
            timeframe_weights={
                Timeframe.M1: Decimal("0.05"),
                Timeframe.M5: Decimal("0.15"),
                Timeframe.M15: Decimal("0.3"),
                Timeframe.H1: Decimal("0.5"),
            },
            sl_multiplier=Decimal("2.0"),
            tp_multiplier=Decimal("3.0"),
            fallback_sl_pct=Decimal("0.05"),
            fallback_tp_pct=Decimal("0.15"),
        ),
    }


@dataclass
class CacheConfig:
    max_bars: int = 500                 # Per symbol/timeframe ring size
    symbols: List[Symbol] = field(default_factory=lambda: list(Symbol))
    timeframes: List[Timeframe] = field(default_factory=lambda: list(Timeframe))


@dataclass
class FeedConfig:
    enabled: bool = True
    base_url: str = "https://api.kucoin.com"
    topic: str = "/market/ticker:all"   # One channel for every symbol
    ping_interval_sec: float = 30.0
    reconnect_base_ms: int = 5000
    reconnect_cap_ms: int = 30000
    max_reconnect_attempts: int = 10
    renewal_interval_sec: float = 12 * 3600     # Tokens last 24h
    open_timeout_sec: float = 10.0


@dataclass
class FallbackConfig:
    enabled: bool = True
    base_url: str = "https://api.coingecko.com/api/v3"
    interval_sec: float = 120.0         # Conservative for free tier
    min_gap_sec: float = 60.0           # Guard against bursts after restarts
    initial_delay_sec: float = 5.0
    request_timeout_sec: float = 15.0


@dataclass
class HistoryConfig:
    request_delay_sec: float = 0.4      # Between backfill requests
    warm_threshold: int = 200           # 1h bars needed to skip backfill
    warm_timeframe: Timeframe = Timeframe.H1
    sample_size: int = 3                # Symbols checked for warmth


@dataclass
class StorageConfig:
    db_path: str = "./data/bot.db"
    snapshot_key: str = "historical_ohlc"


@dataclass
class StrategyConfig:
    default_plan: str = "mid"
    bars_per_timeframe: int = 200
    min_bars: int = 50
    health_interval_sec: float = 60.0


@dataclass
class BotConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    plans: Dict[str, Plan] = field(default_factory=default_plans)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.feed.enabled = os.getenv("FEED_ENABLED", "true").lower() == "true"
        config.fallback.enabled = os.getenv("FALLBACK_ENABLED", "true").lower() == "true"
        config.cache.max_bars = int(os.getenv("MAX_BARS", str(config.cache.max_bars)))
        config.feed.base_url = os.getenv("KUCOIN_BASE_URL", config.feed.base_url)
        config.fallback.base_url = os.getenv("COINGECKO_BASE_URL", config.fallback.base_url)
        config.storage.db_path = os.getenv("DB_PATH", "./data/bot.db")
        config.strategy.default_plan = os.getenv("DEFAULT_PLAN", "mid")
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        return config
