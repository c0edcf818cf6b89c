"""
Vote Signal Bot — Main Orchestrator.
Ties all components together: startup, backfill, feeds, health loop, shutdown.
"""

from __future__ import annotations
import asyncio
import os
import sys
import signal
import logging

from dotenv import load_dotenv

# Load .env file before anything else
load_dotenv()

from config import BotConfig
from core.signal_engine import StrategyEngine
from data.bar_cache import BarCache
from data.fallback import FallbackPoller
from data.historical import HistoricalLoader
from exchange.coingecko_rest import CoinGeckoClient
from exchange.errors import PersistenceError
from exchange.kucoin_rest import KuCoinRestClient
from exchange.kucoin_ws import KuCoinFeedConnector
from exchange.models import Direction
from storage.database import Database

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: str = "data/bot.log"):
    # Create data dir before FileHandler
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )


class Bot:
    """Main bot orchestrator."""

    def __init__(self, config: BotConfig):
        self.config = config
        self._stop_event = asyncio.Event()

        # Shared state, passed explicitly to every component
        self.cache = BarCache(
            max_bars=config.cache.max_bars,
            symbols=config.cache.symbols,
            timeframes=config.cache.timeframes,
        )
        self.db = Database(config.storage.db_path)

        # REST clients
        self.kucoin = KuCoinRestClient(base_url=config.feed.base_url)
        self.coingecko = CoinGeckoClient(
            base_url=config.fallback.base_url,
            timeout=config.fallback.request_timeout_sec,
        )

        # Ingestion
        self.history = HistoricalLoader(
            cache=self.cache,
            client=self.kucoin,
            db=self.db,
            config=config.history,
            snapshot_key=config.storage.snapshot_key,
        )
        self.feed = KuCoinFeedConnector(self.cache, self.kucoin, config.feed)
        self.fallback = FallbackPoller(self.cache, self.coingecko, config.fallback)

        # Strategy
        self.engine = StrategyEngine(
            cache=self.cache,
            plans=config.plans,
            default_plan=config.strategy.default_plan,
            bars_per_timeframe=config.strategy.bars_per_timeframe,
            min_bars=config.strategy.min_bars,
        )

    async def start(self):
        """Full startup sequence."""
        if self._stop_event.is_set():
            return

        logger.info("=" * 60)
        logger.info("   VOTE SIGNAL BOT — STARTING")
        logger.info("=" * 60)

        # 1. Connect database (a broken store only costs us the snapshot)
        db_dir = os.path.dirname(self.config.storage.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        try:
            self.db.connect()
        except PersistenceError as e:
            logger.error(f"[BOOT] Snapshot store unavailable: {e}")

        # 2. Restore snapshot / backfill history
        await self.history.run()

        # A signal during restore/backfill has already shut everything down
        if self._stop_event.is_set():
            logger.info("[BOOT] Shutdown requested during startup, not starting feeds")
            return

        # 3. Run all async tasks
        logger.info(f"[BOOT] ✅ Tracking {len(self.cache.symbols)} symbols. Running...")

        await asyncio.gather(
            self.feed.start(),
            self.fallback.start(),
            self._health_loop(),
        )

    async def stop(self):
        """Graceful shutdown."""
        if self._stop_event.is_set():
            return
        logger.info("[SHUTDOWN] Stopping bot...")
        self._stop_event.set()

        self.history.stop()
        await self.feed.stop()
        await self.fallback.stop()
        self.history.save_snapshot()
        await self.kucoin.close()
        await self.coingecko.close()
        self.db.close()

        logger.info("[SHUTDOWN] Complete.")

    async def _health_loop(self):
        """Log stale data, feed status and a signal summary periodically."""
        interval = self.config.strategy.health_interval_sec
        stale_after_ms = int(self.config.fallback.interval_sec * 2 * 1000)

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                stale = self.cache.get_stale_symbols(stale_after_ms)
                if stale:
                    logger.warning(
                        f"[HEALTH] ⚠️ Stale data detected for: "
                        f"{', '.join(s.value.upper() for s in stale)}"
                    )

                status = self.feed.get_status()
                logger.info(
                    f"[HEALTH] Feed {status['state']} "
                    f"(attempts={status['reconnect_attempts']}), "
                    f"bars cached: {self.cache.get_metrics()['total_bars']}"
                )

                signals = []
                for symbol in self.cache.symbols:
                    result = self.engine.analyze_symbol(symbol, self.config.strategy.default_plan)
                    if result.signal != Direction.HOLD:
                        signals.append(f"{symbol.value.upper()}={result.signal.value}({result.confidence}%)")
                if signals:
                    logger.info(f"[HEALTH] Signals: {' '.join(signals)}")

            except Exception as e:
                logger.error(f"[HEALTH] Check error: {e}", exc_info=True)


async def main():
    """Entry point."""
    config = BotConfig.from_env()
    setup_logging(config.log_level)

    bot = Bot(config)

    # Graceful shutdown handler
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(bot.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await bot.start()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received in main loop.")
        await bot.stop()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await bot.stop()
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
