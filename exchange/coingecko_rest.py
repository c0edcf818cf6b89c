"""
CoinGecko REST Client — batched spot prices for the fallback poller.
"""

from __future__ import annotations
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional
import aiohttp
from exchange.errors import FeedConnectionError, RateLimitError
import logging

logger = logging.getLogger(__name__)


class CoinGeckoClient:
    """Async CoinGecko /simple/price wrapper."""

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_prices(self, coin_ids: Iterable[str], vs_currency: str = "usd") -> Dict[str, Decimal]:
        """
        One request for the whole basket.
        Returns coin_id -> price for every id the API priced.
        """
        ids = ",".join(coin_ids)
        session = await self._get_session()
        url = f"{self.base_url}/simple/price"
        params = {"ids": ids, "vs_currencies": vs_currency, "include_24hr_vol": "true"}

        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    raise RateLimitError(
                        "coingecko", float(retry_after) if retry_after and retry_after.isdigit() else None
                    )
                if resp.status >= 400:
                    raise FeedConnectionError(f"HTTP {resp.status} from /simple/price")
                data = await resp.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedConnectionError(f"GET /simple/price failed: {e}") from e

        prices: Dict[str, Decimal] = {}
        if not isinstance(data, dict):
            return prices

        for coin_id, quote in data.items():
            if not isinstance(quote, dict) or quote.get(vs_currency) is None:
                continue
            try:
                prices[coin_id] = Decimal(str(quote[vs_currency]))
            except InvalidOperation:
                logger.warning(f"[COINGECKO] Bad price for {coin_id}: {quote[vs_currency]!r}")
        return prices
