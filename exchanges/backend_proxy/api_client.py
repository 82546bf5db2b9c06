"""
Backend Proxy API Client

Client for another instance of this service's HTTP surface (or any backend
exposing the same endpoints). Useful when browsers or restricted networks
cannot reach the exchanges directly.

Endpoints:
    GET {base}/kline?symbol=BTCUSDT&interval=1h&limit=100
        -> {"success": true, "data": [{timestamp, open, high, low, close, volume}], "source": "okx"}
    GET {base}/symbols
        -> {"success": true, "symbols": [...]}
    GET {base}/health
        -> {"status": "ok", ...}
"""

from typing import Any, Dict, List, Optional

from core.errors import UpstreamError
from core.schemas import Candle, PriceTick, ProxyResponse
from core.utils.time import current_utc_timestamp
from exchanges.rest_client import RestClient, parsing


SOURCE = "backend_proxy"


# ============================================
# Payload Parsers
# ============================================

def parse_kline_response(payload: Any) -> List[Candle]:
    """
    Parse a ProxyResponse carrying candles (oldest first).

    Raises:
        UpstreamError: success=false, malformed candles, or empty data
    """
    with parsing(SOURCE, "kline"):
        response = ProxyResponse.model_validate(payload)
        if not response.success:
            raise UpstreamError(SOURCE, response.message or "proxy reported failure")
        candles = [Candle.model_validate(item) for item in response.data or []]

    if not candles:
        raise UpstreamError(SOURCE, "empty kline result")
    return sorted(candles, key=lambda c: c.timestamp)


def tick_from_candles(candles: List[Candle], symbol: str, received_at: Optional[int] = None) -> PriceTick:
    """
    Derive a PriceTick from the two most recent candles.

    price is the newest close; the change is measured against the previous
    close; high/low/volume cover both candles.
    """
    if len(candles) < 2:
        raise UpstreamError(SOURCE, f"need 2 candles to derive a ticker, got {len(candles)}")

    previous, current = candles[-2], candles[-1]
    change = current.close - previous.close

    with parsing(SOURCE, "derived ticker"):
        return PriceTick(
            symbol=symbol,
            price=current.close,
            price_change=change,
            price_change_percent=round(change / previous.close * 100, 2) if previous.close else 0.0,
            high_24h=max(previous.high, current.high),
            low_24h=min(previous.low, current.low),
            volume_24h=previous.volume + current.volume,
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


# ============================================
# Client
# ============================================

class BackendProxyAPIClient(RestClient):
    """Async HTTP client for a market data backend proxy."""

    BASE_URL = "http://localhost:8080/api/market"

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        super().__init__(SOURCE, base_url or self.BASE_URL, timeout=timeout)

    async def get_kline(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        payload = await self._get("/kline", {"symbol": symbol, "interval": interval, "limit": limit})
        return parse_kline_response(payload)

    async def get_health(self) -> Dict[str, Any]:
        """
        Raises:
            UpstreamError: Unreachable or non-object response
        """
        payload = await self._get("/health")
        if not isinstance(payload, dict):
            raise UpstreamError(SOURCE, "malformed health payload")
        return payload

    async def get_symbols(self) -> List[Dict[str, Any]]:
        payload = await self._get("/symbols")
        with parsing(SOURCE, "symbols"):
            if not payload.get("success", False):
                raise UpstreamError(SOURCE, payload.get("message") or "proxy reported failure")
            return list(payload["symbols"])
