"""
OKX Source Adapter

Implements SourceAdapter for OKX spot market data.

Endpoints Used:
    - GET /api/v5/market/ticker - 24h ticker
    - GET /api/v5/market/candles - Candlesticks (newest first, reversed)
    - GET /api/v5/market/books - Order book snapshot
    - GET /api/v5/public/time - Health check

Symbols are sent as instrument ids (BTCUSDT -> BTC-USDT). Requests can be
routed through CORS relays configured with OKX_RELAYS.
"""

from typing import List, Optional

from core.logging import get_logger
from core.schemas import Candle, OrderBookSnapshot, PriceTick
from core.source_adapter import SourceAdapter
from .api_client import OKXAPIClient


class OKXSource(SourceAdapter):
    """OKX market data source, optionally behind a relay list."""

    name = "okx"

    capabilities = {
        "ticker": True,
        "candles": True,
        "orderbook": True,
    }

    def __init__(
        self,
        base_url: Optional[str] = None,
        relays: Optional[List[str]] = None,
        timeout: float = 10.0
    ):
        self.client = OKXAPIClient(base_url=base_url, relays=relays, timeout=timeout)
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        await self.client.open()
        relay_note = f" via {len(self.client.relays)} relay(s)" if self.client.relays else ""
        self.logger.info(f"✓ OKX source initialized{relay_note}")

    async def shutdown(self) -> None:
        await self.client.close()

    async def health_check(self) -> bool:
        return await self.client.get_system_time() is not None

    async def fetch_ticker(self, symbol: str) -> PriceTick:
        return await self.client.get_ticker(symbol)

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        return await self.client.get_candles(symbol, interval, limit)

    async def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBookSnapshot:
        return await self.client.get_books(symbol, depth)


__all__ = ["OKXSource", "OKXAPIClient"]
