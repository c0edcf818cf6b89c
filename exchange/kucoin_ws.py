"""
KuCoin WebSocket Feed Connector.
Token bootstrap -> subscribe -> keepalive -> reconnect with backoff,
plus a scheduled credential renewal. Pushes ticks into the BarCache.
"""

from __future__ import annotations
import asyncio
import json
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union
import websockets
from exchange.errors import ParseError
from exchange.models import FeedState, Source, Symbol, WSToken
import logging

if TYPE_CHECKING:
    from config import FeedConfig
    from data.bar_cache import BarCache
    from exchange.kucoin_rest import KuCoinRestClient

logger = logging.getLogger(__name__)

# Ordered: the all-tickers channel does not always carry a trade price
PRICE_FIELDS = ("bestAsk", "price", "bestBid")


# ==================== Message Variants ====================

@dataclass
class Welcome:
    id: Optional[str] = None


@dataclass
class Pong:
    id: Optional[str] = None


@dataclass
class Ack:
    id: Optional[str] = None


@dataclass
class TickerUpdate:
    topic: str
    subject: str
    data: Dict[str, Any]


@dataclass
class Unknown:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


FeedMessage = Union[Welcome, Pong, Ack, TickerUpdate, Unknown]


def decode_message(raw: Union[str, bytes]) -> FeedMessage:
    """Decode one raw frame. Raises ParseError on malformed input."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON: {str(raw)[:100]}") from e

    if not isinstance(payload, dict):
        raise ParseError(f"Expected object, got {type(payload).__name__}")

    msg_type = payload.get("type")
    if msg_type == "welcome":
        return Welcome(payload.get("id"))
    if msg_type == "pong":
        return Pong(payload.get("id"))
    if msg_type == "ack":
        return Ack(payload.get("id"))
    if msg_type == "message":
        topic = payload.get("topic")
        subject = payload.get("subject")
        data = payload.get("data")
        if not isinstance(topic, str) or not isinstance(subject, str) or not isinstance(data, dict):
            raise ParseError(f"Malformed data message: {str(raw)[:100]}")
        return TickerUpdate(topic=topic, subject=subject, data=data)
    return Unknown(type=str(msg_type), payload=payload)


def extract_price(data: Dict[str, Any]) -> Optional[Decimal]:
    """
    First present field of bestAsk -> price -> bestBid.
    None unless that value is a finite positive number.
    """
    for name in PRICE_FIELDS:
        value = data.get(name)
        if value is None or value == "":
            continue
        try:
            price = Decimal(str(value))
        except InvalidOperation:
            return None
        if not price.is_finite() or price <= 0:
            return None
        return price
    return None


# ==================== Connector ====================

class KuCoinFeedConnector:
    """Maintains the streaming price connection for the whole basket."""

    def __init__(
        self,
        cache: "BarCache",
        client: "KuCoinRestClient",
        config: "FeedConfig",
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.cache = cache
        self.client = client
        self.config = config
        self.enabled = config.enabled
        self._connect = connect

        self.state = FeedState.DISCONNECTED
        self.reconnect_attempts = 0
        self.current_backoff_ms = 0
        self.credential_expiry: Optional[int] = None
        self.connected_at: Optional[float] = None
        self.last_ping_time: Optional[float] = None

        self._ws = None
        self._stop_event = asyncio.Event()
        self._ping_task: Optional[asyncio.Task] = None
        self._renewal_task: Optional[asyncio.Task] = None
        self._renewing = False
        self._msg_id = 0
        self._tick_count: Dict[Symbol, int] = {}

    @property
    def is_connected(self) -> bool:
        return self.state == FeedState.CONNECTED

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before reconnect attempt n (1-based)."""
        return min(
            self.config.reconnect_base_ms * 2 ** (attempt - 1),
            self.config.reconnect_cap_ms,
        )

    async def start(self):
        """Run the connection loop until stopped or the feed gives up."""
        if not self.enabled:
            logger.info("[KUCOIN-WS] WebSocket disabled via config")
            return

        if self._stop_event.is_set():
            logger.info("[KUCOIN-WS] Feed already stopped, not starting")
            return

        logger.info(f"[KUCOIN-WS] Starting feed for {len(self.cache.symbols)} symbols")

        while not self._stop_event.is_set():
            self.state = FeedState.CONNECTING
            try:
                logger.info("[KUCOIN-WS] Requesting connection token...")
                token = await self.client.get_ws_token()
                self.credential_expiry = token.expires_at
                if self._stop_event.is_set():
                    break
                await self._run_connection(token)

            except websockets.ConnectionClosed as e:
                logger.warning(f"[KUCOIN-WS] Connection closed: {e}")
            except Exception as e:
                logger.error(f"[KUCOIN-WS] Connection error: {e}")
            finally:
                await self._teardown_connection()

            if self._stop_event.is_set():
                break

            if self._renewing:
                # Scheduled renewal: fresh token now, no backoff attempt used
                self._renewing = False
                self.state = FeedState.RECONNECTING
                continue

            if not await self._schedule_reconnect():
                break

        if self.state != FeedState.UNAVAILABLE:
            self.state = FeedState.DISCONNECTED

    async def stop(self):
        """Cancel timers, close the socket and suppress further reconnects."""
        logger.info("[KUCOIN-WS] Disconnecting...")
        self._stop_event.set()
        ws = self._ws
        await self._teardown_connection()
        if ws is not None:
            await ws.close()
        if self.state != FeedState.UNAVAILABLE:
            self.state = FeedState.DISCONNECTED

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "state": self.state.value,
            "connected": self.is_connected,
            "reconnect_attempts": self.reconnect_attempts,
            "current_backoff_ms": self.current_backoff_ms,
            "connected_at": self.connected_at,
            "credential_expiry": self.credential_expiry,
            "last_ping": self.last_ping_time,
        }

    # ==================== Internal Connection Management ====================

    async def _run_connection(self, token: WSToken):
        url = f"{token.endpoint}?token={token.token}"
        logger.info("[KUCOIN-WS] Connecting to WebSocket...")

        async with self._connect(
            url,
            ping_interval=None,         # Application-level ping below
            open_timeout=self.config.open_timeout_sec,
            close_timeout=5,
        ) as ws:
            self._ws = ws
            if self._stop_event.is_set():
                # stop() landed during the handshake
                return
            self._on_open()
            await self._subscribe(ws)

            self._ping_task = asyncio.create_task(self._ping_loop(ws))
            self._renewal_task = asyncio.create_task(self._renewal_timer(ws))

            async for raw in ws:
                self._handle_message(raw)

        logger.info("[KUCOIN-WS] Connection closed")

    def _on_open(self):
        logger.info("[KUCOIN-WS] ✅ Connected successfully")
        self.state = FeedState.CONNECTED
        self.reconnect_attempts = 0
        self.current_backoff_ms = 0
        self.connected_at = time.time()

    async def _subscribe(self, ws):
        """One subscription covering every ticker."""
        msg = {
            "id": self._next_id(),
            "type": "subscribe",
            "topic": self.config.topic,
            "privateChannel": False,
            "response": True,
        }
        await ws.send(json.dumps(msg))
        logger.info(f"[KUCOIN-WS] Subscribed to {self.config.topic}")

    async def _ping_loop(self, ws):
        while True:
            await asyncio.sleep(self.config.ping_interval_sec)
            try:
                await ws.send(json.dumps({"id": self._next_id(), "type": "ping"}))
            except websockets.ConnectionClosed:
                # The reader loop drives reconnection
                return
            self.last_ping_time = time.time()

    async def _renewal_timer(self, ws):
        await asyncio.sleep(self.config.renewal_interval_sec)
        uptime_h = (time.time() - (self.connected_at or time.time())) / 3600
        logger.info(f"[KUCOIN-WS] Renewing connection after {uptime_h:.0f}h uptime")
        self._renewing = True
        self.state = FeedState.RECONNECTING
        await ws.close()

    async def _teardown_connection(self):
        current = asyncio.current_task()
        for task in (self._ping_task, self._renewal_task):
            if task is None or task.done() or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ping_task = None
        self._renewal_task = None
        self._ws = None

    async def _schedule_reconnect(self) -> bool:
        """Back off before the next attempt. False once the feed gives up."""
        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            self.state = FeedState.UNAVAILABLE
            logger.error("[KUCOIN-WS] Max reconnect attempts reached, feed unavailable")
            return False

        self.reconnect_attempts += 1
        delay_ms = self.backoff_delay_ms(self.reconnect_attempts)
        self.current_backoff_ms = delay_ms
        self.state = FeedState.RECONNECTING

        logger.info(
            f"[KUCOIN-WS] Reconnecting in {delay_ms / 1000:.0f}s "
            f"(attempt {self.reconnect_attempts}/{self.config.max_reconnect_attempts})"
        )
        await self._sleep(delay_ms / 1000)
        return not self._stop_event.is_set()

    async def _sleep(self, seconds: float):
        """Sleep that wakes early on stop()."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _next_id(self) -> str:
        self._msg_id += 1
        return f"{int(time.time() * 1000)}{self._msg_id}"

    # ==================== Message Handling ====================

    def _handle_message(self, raw: Union[str, bytes]):
        try:
            message = decode_message(raw)
        except ParseError as e:
            logger.warning(f"[KUCOIN-WS] Dropping message: {e}")
            return

        try:
            if isinstance(message, TickerUpdate):
                if message.topic == self.config.topic:
                    self._handle_ticker(message)
            elif isinstance(message, Welcome):
                logger.info("[KUCOIN-WS] Received welcome message")
            elif isinstance(message, (Pong, Ack)):
                return
            elif message.type == "error":
                logger.warning(f"[KUCOIN-WS] Server error: {message.payload}")
            else:
                logger.debug(f"[KUCOIN-WS] Ignoring '{message.type}' message")
        except Exception as e:
            logger.error(f"[KUCOIN-WS] Handler error: {e}", exc_info=True)

    def _handle_ticker(self, message: TickerUpdate):
        symbol = Symbol.from_kucoin(message.subject)
        if symbol is None:
            return      # Not in our basket

        price = extract_price(message.data)
        if price is None:
            self.cache.record_error(symbol)
            logger.debug(f"[KUCOIN-WS] {message.subject}: no usable price in {message.data}")
            return

        self.cache.update_tick(symbol, price, Source.FEED)

        # Log every 100th tick per symbol to confirm flow without spam
        count = self._tick_count.get(symbol, 0) + 1
        self._tick_count[symbol] = count
        if count % 100 == 1:
            logger.info(
                f"[KUCOIN-WS] {symbol.value.upper()}: {count} ticks received, "
                f"latest price: {price}"
            )
