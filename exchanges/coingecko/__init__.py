"""
CoinGecko Source Adapter

Ticker and (synthesized) candle data for the most common pairs. CoinGecko
quotes in USD, which is treated as equivalent to the USDT quote of the
canonical symbols. No order book support.
"""

from typing import List, Optional

from core.logging import get_logger
from core.schemas import Candle, PriceTick
from core.source_adapter import SourceAdapter
from .api_client import CoinGeckoAPIClient, COIN_IDS


class CoinGeckoSource(SourceAdapter):
    name = "coingecko"

    capabilities = {
        "ticker": True,
        "candles": True,
        "orderbook": False,
    }

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        self.client = CoinGeckoAPIClient(base_url=base_url, timeout=timeout)
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        await self.client.open()
        self.logger.info(f"✓ CoinGecko source initialized ({len(COIN_IDS)} coins mapped)")

    async def shutdown(self) -> None:
        await self.client.close()

    async def health_check(self) -> bool:
        return await self.client.ping()

    async def fetch_ticker(self, symbol: str) -> PriceTick:
        return await self.client.get_simple_price(symbol)

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        return await self.client.get_market_chart(symbol, interval, limit)


__all__ = ["CoinGeckoSource", "CoinGeckoAPIClient"]
