"""
KuCoin Public REST API Client.
WebSocket credential bootstrap and historical candle backfill.
"""

from __future__ import annotations
import asyncio
import time
from typing import Any, Dict, List, Optional
import aiohttp
from exchange.errors import FeedConnectionError, FeedError, RateLimitError
from exchange.models import WSToken
import logging

logger = logging.getLogger(__name__)

KUCOIN_OK = "200000"


class KuCoinRestClient:
    """Async KuCoin public REST API wrapper."""

    def __init__(self, base_url: str = "https://api.kucoin.com", timeout: float = 15.0):
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

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """Make an API request. Returns the response's `data` field."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        try:
            async with session.request(method, url, params=params) as resp:
                if resp.status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    raise RateLimitError(
                        "kucoin", float(retry_after) if retry_after and retry_after.isdigit() else None
                    )
                if resp.status >= 400:
                    raise FeedConnectionError(f"HTTP {resp.status} from {endpoint}")
                data = await resp.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[REST] {method} {endpoint} Exception: {e}")
            raise FeedConnectionError(f"{method} {endpoint} failed: {e}") from e

        if not isinstance(data, dict) or data.get("code") != KUCOIN_OK:
            code = data.get("code") if isinstance(data, dict) else None
            msg = data.get("msg") if isinstance(data, dict) else None
            logger.error(f"[REST] {method} {endpoint} Error: code={code}, msg={msg}")
            raise FeedError(msg or f"Unexpected response from {endpoint}")

        return data.get("data")

    # ==================== Market Endpoints ====================

    async def get_ws_token(self) -> WSToken:
        """
        Request a public WebSocket token (no auth needed).
        Tokens are valid for 24h.
        """
        data = await self._request("POST", "/api/v1/bullet-public")
        try:
            server = data["instanceServers"][0]
            return WSToken(
                token=data["token"],
                endpoint=server["endpoint"],
                expires_at=int(time.time() * 1000) + 24 * 3600 * 1000,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise FeedConnectionError(f"Malformed bullet response: {e}") from e

    async def get_candles(
        self,
        symbol: str,
        candle_type: str,
        start_at: Optional[int] = None,
        end_at: Optional[int] = None,
    ) -> List[List[str]]:
        """
        Get historical candles.
        Type: 1min, 3min, 5min, 15min, 30min, 1hour, 2hour, 4hour, ...
        Rows are [time(s), open, close, high, low, volume, turnover],
        newest first; callers reorder chronologically.
        """
        params: Dict[str, Any] = {"type": candle_type, "symbol": symbol}
        if start_at is not None:
            params["startAt"] = str(start_at)
        if end_at is not None:
            params["endAt"] = str(end_at)

        data = await self._request("GET", "/api/v1/market/candles", params)
        return data if isinstance(data, list) else []
