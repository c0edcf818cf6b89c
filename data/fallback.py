"""
Fallback Poller — Batched REST prices as redundancy for the WebSocket feed.

Always running, not only when the feed is down:
  - One batched request for the whole basket per cycle
  - Fixed interval with an extra minimum-gap guard
  - HTTP 429 skips the cycle silently; the next cycle tries again
"""

from __future__ import annotations
import asyncio
import time
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Optional
from exchange.errors import RateLimitError
from exchange.models import Source, Symbol
import logging

if TYPE_CHECKING:
    from config import FallbackConfig
    from data.bar_cache import BarCache
    from exchange.coingecko_rest import CoinGeckoClient

logger = logging.getLogger(__name__)


class FallbackPoller:
    """Periodic batched price fetch from CoinGecko into the BarCache."""

    def __init__(self, cache: "BarCache", client: "CoinGeckoClient", config: "FallbackConfig"):
        self.cache = cache
        self.client = client
        self.config = config
        self.enabled = config.enabled
        self._last_fetch: Optional[float] = None      # monotonic seconds
        self._stop_event = asyncio.Event()

    async def start(self):
        """Run the polling loop until stop()."""
        if not self.enabled:
            logger.info("[COINGECKO] Fallback polling disabled via config")
            return

        if self._stop_event.is_set():
            logger.info("[COINGECKO] Poller already stopped, not starting")
            return

        logger.info(f"[COINGECKO] Starting batch fallback (every {self.config.interval_sec:.0f}s)")

        await self._wait(self.config.initial_delay_sec)
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"[COINGECKO] Poll cycle error: {e}", exc_info=True)

            await self._wait(self.config.interval_sec)

    async def stop(self):
        """Stop polling. Sticky: a later start() returns immediately."""
        self._stop_event.set()

    async def _wait(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def poll_once(self) -> int:
        """
        One batched fetch. Returns the number of symbols updated
        (0 when skipped by the gap guard or rate limit).
        """
        now = time.monotonic()
        if self._last_fetch is not None and now - self._last_fetch < self.config.min_gap_sec:
            logger.debug("[COINGECKO] Skipping cycle, minimum gap not reached")
            return 0

        ids: Dict[str, Symbol] = {s.coingecko_id: s for s in self.cache.symbols}

        try:
            prices = await self.client.get_prices(ids.keys())
        except RateLimitError:
            logger.warning("[COINGECKO] Rate limited, will retry next cycle")
            return 0
        except Exception as e:
            logger.error(f"[COINGECKO] Batch fetch error: {e}")
            for symbol in ids.values():
                self.cache.record_error(symbol)
            return 0

        self._last_fetch = now

        updated = 0
        for coin_id, symbol in ids.items():
            price = prices.get(coin_id)
            if price is None or not price.is_finite() or price <= Decimal("0"):
                self.cache.record_error(symbol)
                continue
            self.cache.update_tick(symbol, price, Source.FALLBACK)
            updated += 1

        logger.info(f"[COINGECKO] Batch updated {updated}/{len(ids)} prices")
        return updated
