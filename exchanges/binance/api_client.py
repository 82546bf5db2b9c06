"""
Binance REST API Client

This module provides an async HTTP client for the Binance spot REST API.
It handles:
- Building requests for ticker, kline and depth endpoints
- Parsing Binance payloads into canonical schemas
- Translating malformed or empty results into UpstreamError

API Documentation:
    https://binance-docs.github.io/apidocs/spot/en/

Usage:
    async with BinanceAPIClient() as client:
        tick = await client.get_ticker("BTCUSDT")
        candles = await client.get_klines("BTCUSDT", "1h", limit=100)
"""

from typing import Any, List, Optional

from core.errors import UpstreamError
from core.schemas import Candle, OrderBookLevel, OrderBookSnapshot, PriceTick
from core.utils.time import current_utc_timestamp
from exchanges.rest_client import RestClient, parsing


SOURCE = "binance"

BINANCE_INTERVALS = {"1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "12h", "1d", "1w"}

# Binance depth endpoint only accepts these limits
DEPTH_LIMITS = (5, 10, 20, 50, 100, 500, 1000, 5000)


# ============================================
# Payload Parsers
# ============================================

def parse_ticker(payload: Any, symbol: str, received_at: Optional[int] = None) -> PriceTick:
    """
    Parse a /api/v3/ticker/24hr response.

    Response Format:
        {
          "symbol": "BTCUSDT",
          "priceChange": "1200.00",
          "priceChangePercent": "1.880",
          "lastPrice": "65000.00",
          "highPrice": "65500.00",
          "lowPrice": "63100.00",
          "volume": "18250.40",
          ...
        }
    """
    with parsing(SOURCE, "ticker"):
        return PriceTick(
            symbol=symbol,
            price=float(payload["lastPrice"]),
            price_change=float(payload["priceChange"]),
            price_change_percent=float(payload["priceChangePercent"]),
            high_24h=float(payload["highPrice"]),
            low_24h=float(payload["lowPrice"]),
            volume_24h=float(payload["volume"]),
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


def parse_klines(payload: Any) -> List[Candle]:
    """
    Parse a /api/v3/klines response (oldest first).

    Response Format:
        [
          [
            1499040000000,      // Open time
            "0.01634000",       // Open
            "0.80000000",       // High
            "0.01575800",       // Low
            "0.01577100",       // Close
            "148976.11427815",  // Volume
            ...
          ]
        ]
    """
    with parsing(SOURCE, "klines"):
        if not isinstance(payload, list):
            raise UpstreamError(SOURCE, f"expected kline list, got {type(payload).__name__}")
        candles = [
            Candle(
                timestamp=int(item[0]),
                open=float(item[1]),
                high=float(item[2]),
                low=float(item[3]),
                close=float(item[4]),
                volume=float(item[5]),
            )
            for item in payload
        ]

    if not candles:
        raise UpstreamError(SOURCE, "empty kline result")
    return candles


def parse_depth(payload: Any, symbol: str, received_at: Optional[int] = None) -> OrderBookSnapshot:
    """
    Parse a /api/v3/depth response.

    Response Format:
        {
          "lastUpdateId": 1027024,
          "bids": [["4.00000000", "431.00000000"]],
          "asks": [["4.00000200", "12.00000000"]]
        }
    """
    with parsing(SOURCE, "depth"):
        return OrderBookSnapshot(
            symbol=symbol,
            bids=[OrderBookLevel(price=float(p), amount=float(q)) for p, q in payload["bids"]],
            asks=[OrderBookLevel(price=float(p), amount=float(q)) for p, q in payload["asks"]],
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


def depth_limit(depth: int) -> int:
    """Smallest Binance-accepted depth limit that covers the requested depth."""
    for limit in DEPTH_LIMITS:
        if depth <= limit:
            return limit
    return DEPTH_LIMITS[-1]


# ============================================
# Client
# ============================================

class BinanceAPIClient(RestClient):
    """
    Async HTTP client for Binance spot market data.

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     book = await client.get_depth("BTCUSDT", depth=20)
        ...     print(book.best_bid, book.best_ask)
    """

    BASE_URL = "https://api.binance.com"

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        super().__init__(SOURCE, base_url or self.BASE_URL, timeout=timeout)

    async def get_ticker(self, symbol: str) -> PriceTick:
        """
        Binance Endpoint:
            GET /api/v3/ticker/24hr?symbol={symbol}
        """
        payload = await self._get("/api/v3/ticker/24hr", {"symbol": symbol})
        return parse_ticker(payload, symbol)

    async def get_klines(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        """
        Binance Endpoint:
            GET /api/v3/klines?symbol={symbol}&interval={interval}&limit={limit}

        Notes:
            - Unknown intervals fall back to "1h"
            - limit is capped at 1000 (Binance maximum)
        """
        params = {
            "symbol": symbol,
            "interval": interval if interval in BINANCE_INTERVALS else "1h",
            "limit": min(limit, 1000),
        }
        self.logger.debug(f"Fetching klines: {symbol} {params['interval']} (limit={params['limit']})")
        payload = await self._get("/api/v3/klines", params)
        return parse_klines(payload)

    async def get_depth(self, symbol: str, depth: int = 20) -> OrderBookSnapshot:
        """
        Binance Endpoint:
            GET /api/v3/depth?symbol={symbol}&limit={limit}

        Notes:
            The request uses the nearest accepted limit; the snapshot is cut
            back to the requested depth.
        """
        payload = await self._get("/api/v3/depth", {"symbol": symbol, "limit": depth_limit(depth)})
        book = parse_depth(payload, symbol)
        return book.model_copy(update={"bids": book.bids[:depth], "asks": book.asks[:depth]})

    async def ping(self) -> bool:
        """GET /api/v3/ping - returns False instead of raising."""
        try:
            await self._get("/api/v3/ping")
            return True
        except UpstreamError as e:
            self.logger.warning(f"Binance ping failed: {e}")
            return False
