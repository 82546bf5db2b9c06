"""
Binance Source Adapter

Implements SourceAdapter for the Binance spot market.

Endpoints Used:
    REST:
        - GET /api/v3/ticker/24hr - 24h ticker statistics
        - GET /api/v3/klines - Historical candlestick data
        - GET /api/v3/depth - Order book snapshot
        - GET /api/v3/ping - Health check

    WebSocket (optional, see ws_client.py):
        - <symbol>@ticker combined streams for push price updates

Binance symbols already use the canonical spelling (BTCUSDT), so no symbol
translation is needed.
"""

from typing import List, Optional

from core.logging import get_logger
from core.schemas import Candle, OrderBookSnapshot, PriceTick
from core.source_adapter import SourceAdapter
from .api_client import BinanceAPIClient
from .ws_client import BinanceTickerStream


class BinanceSource(SourceAdapter):
    """
    Binance spot market data source.

    Example:
        >>> source = BinanceSource()
        >>> await source.initialize()
        >>> tick = await source.fetch_ticker("BTCUSDT")
        >>> await source.shutdown()
    """

    name = "binance"

    capabilities = {
        "ticker": True,
        "candles": True,
        "orderbook": True,
    }

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        self.client = BinanceAPIClient(base_url=base_url, timeout=timeout)
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        await self.client.open()
        self.logger.info("✓ Binance source initialized")

    async def shutdown(self) -> None:
        await self.client.close()

    async def health_check(self) -> bool:
        return await self.client.ping()

    async def fetch_ticker(self, symbol: str) -> PriceTick:
        return await self.client.get_ticker(symbol)

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        return await self.client.get_klines(symbol, interval, limit)

    async def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBookSnapshot:
        return await self.client.get_depth(symbol, depth)


__all__ = ["BinanceSource", "BinanceAPIClient", "BinanceTickerStream"]
