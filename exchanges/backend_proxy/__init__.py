"""
Backend Proxy Source Adapter

Candles come straight from the proxy's /kline endpoint; tickers are derived
from the two most recent 1m candles. No order book support.
"""

from typing import Any, Dict, List, Optional

from core.errors import UpstreamError
from core.logging import get_logger
from core.schemas import Candle, PriceTick
from core.source_adapter import SourceAdapter
from .api_client import BackendProxyAPIClient, tick_from_candles


class BackendProxySource(SourceAdapter):
    name = "backend_proxy"

    capabilities = {
        "ticker": True,
        "candles": True,
        "orderbook": False,
    }

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        self.client = BackendProxyAPIClient(base_url=base_url, timeout=timeout)
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        await self.client.open()
        self.logger.info(f"✓ Backend proxy source initialized ({self.client.base_url})")

    async def shutdown(self) -> None:
        await self.client.close()

    async def health_check(self) -> bool:
        try:
            health = await self.client.get_health()
        except UpstreamError as e:
            self.logger.warning(f"Backend proxy health check failed: {e}")
            return False
        return health.get("status") == "ok"

    async def fetch_ticker(self, symbol: str) -> PriceTick:
        candles = await self.client.get_kline(symbol, "1m", limit=2)
        return tick_from_candles(candles, symbol)

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        return await self.client.get_kline(symbol, interval, limit)

    async def health(self) -> Dict[str, Any]:
        return await self.client.get_health()

    async def symbols(self) -> List[Dict[str, Any]]:
        return await self.client.get_symbols()


__all__ = ["BackendProxySource", "BackendProxyAPIClient"]
