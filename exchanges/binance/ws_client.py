"""
Binance WebSocket Ticker Stream

Optional push channel for price updates. Polling through the FailoverFetcher
is the baseline; when enabled, this stream feeds PriceTicks straight into the
cache between refresh passes.

It handles:
- One combined-stream connection for all tracked symbols (<symbol>@ticker)
- Automatic reconnection with exponential backoff
- Parsing 24hrTicker events into PriceTick

WebSocket Documentation:
    https://binance-docs.github.io/apidocs/spot/en/#individual-symbol-ticker-streams

Usage:
    async with BinanceTickerStream(["BTCUSDT", "ETHUSDT"]) as stream:
        async for tick in stream.listen():
            print(tick.symbol, tick.price)
"""

import asyncio
import json
from typing import AsyncGenerator, Any, List, Optional

import aiohttp

from core.errors import UpstreamError
from core.logging import get_logger, log_websocket_event
from core.schemas import PriceTick
from core.utils.time import current_utc_timestamp
from exchanges.rest_client import parsing


def parse_ticker_event(message: Any) -> Optional[PriceTick]:
    """
    Parse a combined-stream 24hrTicker message.

    Message Format:
        {
          "stream": "btcusdt@ticker",
          "data": {"e": "24hrTicker", "s": "BTCUSDT", "p": "1200.0", "P": "1.88",
                   "c": "65000.0", "h": "65500.0", "l": "63100.0", "v": "18250.4", ...}
        }

    Returns:
        PriceTick, or None for messages that are not ticker events
    """
    if not isinstance(message, dict):
        return None

    data = message.get("data", message)
    if not isinstance(data, dict) or data.get("e") != "24hrTicker":
        return None

    with parsing("binance", "ticker event"):
        return PriceTick(
            symbol=data["s"],
            price=float(data["c"]),
            price_change=float(data["p"]),
            price_change_percent=float(data["P"]),
            high_24h=float(data["h"]),
            low_24h=float(data["l"]),
            volume_24h=float(data["v"]),
            timestamp=current_utc_timestamp(),
            source="binance",
        )


class BinanceTickerStream:
    """
    Async WebSocket client for Binance combined ticker streams.

    Attributes:
        symbols: Tracked symbols (lowercased for stream names)
        max_reconnect_delay: Maximum delay between reconnection attempts (seconds)
    """

    BASE_URL = "wss://stream.binance.com:9443/stream"

    def __init__(
        self,
        symbols: List[str],
        base_url: Optional[str] = None,
        max_reconnect_delay: int = 30
    ):
        self.symbols = [s.lower() for s in symbols]
        self.base_url = base_url or self.BASE_URL
        self.max_reconnect_delay = max_reconnect_delay

        self.session: Optional[aiohttp.ClientSession] = None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._is_running = False
        self._reconnect_attempt = 0

        self.logger = get_logger(__name__)

    @property
    def url(self) -> str:
        streams = "/".join(f"{s}@ticker" for s in self.symbols)
        return f"{self.base_url}?streams={streams}"

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        self.session = aiohttp.ClientSession()
        self._is_running = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._is_running = False
        await self.close()

    def stop(self) -> None:
        self._is_running = False

    # ============================================
    # WebSocket Connection Management
    # ============================================

    async def connect(self) -> None:
        """
        Raises:
            RuntimeError: If session not initialized
            aiohttp.ClientError: If connection fails
        """
        if not self.session:
            raise RuntimeError("Stream session not initialized. Use 'async with' statement.")

        self.ws = await self.session.ws_connect(self.url, heartbeat=30)
        self._reconnect_attempt = 0
        log_websocket_event("binance", "connected", details=f"{len(self.symbols)} ticker streams")

    async def close(self) -> None:
        if self.ws and not self.ws.closed:
            await self.ws.close()
        if self.session and not self.session.closed:
            await self.session.close()

    # ============================================
    # Message Streaming with Auto-Reconnect
    # ============================================

    async def listen(self) -> AsyncGenerator[PriceTick, None]:
        """
        Yield PriceTicks with automatic reconnection.

        Reconnection Strategy:
            Attempt N waits min(2^(N-1), max_reconnect_delay) seconds.
        """
        while self._is_running:
            try:
                if not self.ws or self.ws.closed:
                    await self.connect()

                async for msg in self.ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            tick = parse_ticker_event(json.loads(msg.data))
                        except (json.JSONDecodeError, UpstreamError) as e:
                            self.logger.warning(f"Skipping bad ticker message: {e}")
                            continue
                        if tick is not None:
                            yield tick

                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        log_websocket_event("binance", "disconnected", details=str(msg.data))
                        break

            except asyncio.CancelledError:
                self.logger.info("Ticker stream cancelled")
                raise

            except aiohttp.ClientError as e:
                log_websocket_event("binance", "error", details=str(e))

            if self._is_running:
                self._reconnect_attempt += 1
                delay = min(2 ** (self._reconnect_attempt - 1), self.max_reconnect_delay)
                self.logger.warning(f"Reconnecting ticker stream in {delay}s (attempt {self._reconnect_attempt})")
                await asyncio.sleep(delay)

        self.logger.info("Ticker stream stopped")
