"""
OKX REST API Client

This module provides an async HTTP client for OKX v5 public market data.
It handles:
- Ticker, candle and order book requests (instId in BASE-QUOTE form)
- The {"code": "0", "msg": "", "data": [...]} response envelope
- An optional list of CORS relays tried in order (nested failover)

API Documentation:
    https://www.okx.com/docs-v5/en/#order-book-trading-market-data

Relay Formats:
    - allorigins-style relays ("...allorigins.win/get?url=") wrap the upstream
      body as {"contents": "<json string>"}
    - prefix relays ("https://relay.example/") return the upstream body as-is

    The relayed URL is the relay prefix followed by the percent-encoded direct
    URL. When no relays are configured the direct URL is used.

Usage:
    async with OKXAPIClient() as client:
        candles = await client.get_candles("BTCUSDT", "1h", limit=100)
"""

import json
from typing import Any, List, Optional
from urllib.parse import quote, urlencode

from core.errors import UpstreamError
from core.schemas import Candle, OrderBookLevel, OrderBookSnapshot, PriceTick
from core.symbols import to_dashed
from core.utils.time import current_utc_timestamp, to_milliseconds
from exchanges.rest_client import RestClient, parsing


SOURCE = "okx"

# Canonical interval -> OKX "bar" parameter (hour and day bars are upper-case)
OKX_BARS = {
    "1m": "1m",
    "3m": "3m",
    "5m": "5m",
    "15m": "15m",
    "30m": "30m",
    "1h": "1H",
    "2h": "2H",
    "4h": "4H",
    "6h": "6H",
    "12h": "12H",
    "1d": "1D",
    "1w": "1W",
}

# OKX /books accepts sz up to 400
MAX_BOOK_DEPTH = 400


# ============================================
# Payload Parsers
# ============================================

def unwrap_envelope(payload: Any) -> List[Any]:
    """
    Check the OKX envelope and return its data list.

    Raises:
        UpstreamError: code != "0" or data missing
    """
    with parsing(SOURCE, "envelope"):
        code = str(payload.get("code"))
        if code != "0":
            raise UpstreamError(SOURCE, f"API error {code}: {payload.get('msg') or 'Unknown error'}")
        data = payload["data"]
        if not isinstance(data, list):
            raise UpstreamError(SOURCE, "envelope data is not a list")
        return data


def parse_ticker(payload: Any, symbol: str, received_at: Optional[int] = None) -> PriceTick:
    """
    Parse a /api/v5/market/ticker response.

    Response Format:
        {"code": "0", "data": [{"instId": "BTC-USDT", "last": "65000", "open24h": "63800",
                                "high24h": "65500", "low24h": "63100", "vol24h": "18250.4", ...}]}

    Notes:
        OKX reports no absolute change; it is derived as last - open24h.
    """
    data = unwrap_envelope(payload)
    if not data:
        raise UpstreamError(SOURCE, f"empty ticker result for {symbol}")

    with parsing(SOURCE, "ticker"):
        item = data[0]
        last = float(item["last"])
        open_24h = float(item["open24h"])
        change = last - open_24h
        return PriceTick(
            symbol=symbol,
            price=last,
            price_change=change,
            price_change_percent=(change / open_24h * 100) if open_24h else 0.0,
            high_24h=float(item["high24h"]),
            low_24h=float(item["low24h"]),
            volume_24h=float(item["vol24h"]),
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


def parse_candles(payload: Any) -> List[Candle]:
    """
    Parse a /api/v5/market/candles response.

    Response Format:
        {"code": "0", "data": [["1704110400000", "o", "h", "l", "c", "vol", ...], ...]}

    Notes:
        OKX returns newest first; the result is reversed to oldest first.
    """
    data = unwrap_envelope(payload)

    with parsing(SOURCE, "candles"):
        candles = [
            Candle(
                timestamp=to_milliseconds(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in data
        ]

    if not candles:
        raise UpstreamError(SOURCE, "empty candle result")
    candles.reverse()
    return candles


def parse_books(payload: Any, symbol: str, received_at: Optional[int] = None) -> OrderBookSnapshot:
    """
    Parse a /api/v5/market/books response.

    Response Format:
        {"code": "0", "data": [{"asks": [["41006.8", "0.6", "0", "1"]],
                                "bids": [["41006.3", "0.3", "0", "2"]], "ts": "..."}]}
    """
    data = unwrap_envelope(payload)
    if not data:
        raise UpstreamError(SOURCE, f"empty order book result for {symbol}")

    with parsing(SOURCE, "order book"):
        book = data[0]
        return OrderBookSnapshot(
            symbol=symbol,
            bids=[OrderBookLevel(price=float(row[0]), amount=float(row[1])) for row in book["bids"]],
            asks=[OrderBookLevel(price=float(row[0]), amount=float(row[1])) for row in book["asks"]],
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


def unwrap_relay(relay: str, payload: Any) -> Any:
    """Strip the allorigins {"contents": "..."} wrapper; other relays pass through."""
    if "allorigins" not in relay:
        return payload
    with parsing(SOURCE, "relay"):
        return json.loads(payload["contents"])


# ============================================
# Client
# ============================================

class OKXAPIClient(RestClient):
    """
    Async HTTP client for OKX market data.

    Attributes:
        relays: CORS relay prefixes tried in order (empty = direct requests)
    """

    BASE_URL = "https://www.okx.com"

    def __init__(
        self,
        base_url: Optional[str] = None,
        relays: Optional[List[str]] = None,
        timeout: float = 10.0
    ):
        super().__init__(SOURCE, base_url or self.BASE_URL, timeout=timeout)
        self.relays = list(relays or [])

    async def _get_market(self, path: str, params: dict) -> Any:
        """
        GET through the relay list, or directly when no relays are configured.

        Raises:
            UpstreamError: A single error covering every relay that failed
        """
        if not self.relays:
            return await self._get(path, params)

        direct_url = f"{self.base_url}{path}?{urlencode(params)}"
        reasons = []
        for relay in self.relays:
            try:
                payload = await self._get(f"{relay}{quote(direct_url, safe='')}")
                return unwrap_relay(relay, payload)
            except UpstreamError as e:
                self.logger.warning(f"OKX relay {relay} failed: {e.cause}")
                reasons.append(f"{relay} -> {e.cause}")

        raise UpstreamError(SOURCE, "all relays failed: " + "; ".join(reasons))

    async def get_ticker(self, symbol: str) -> PriceTick:
        """
        OKX Endpoint:
            GET /api/v5/market/ticker?instId={BASE-QUOTE}
        """
        payload = await self._get_market("/api/v5/market/ticker", {"instId": to_dashed(symbol)})
        return parse_ticker(payload, symbol)

    async def get_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        """
        OKX Endpoint:
            GET /api/v5/market/candles?instId={BASE-QUOTE}&bar={bar}&limit={limit}

        Notes:
            - Unknown intervals fall back to "1H"
            - limit is capped at 300 (OKX maximum)
        """
        params = {
            "instId": to_dashed(symbol),
            "bar": OKX_BARS.get(interval, "1H"),
            "limit": min(limit, 300),
        }
        self.logger.debug(f"Fetching candles: {params['instId']} {params['bar']} (limit={params['limit']})")
        payload = await self._get_market("/api/v5/market/candles", params)
        return parse_candles(payload)

    async def get_books(self, symbol: str, depth: int = 20) -> OrderBookSnapshot:
        """
        OKX Endpoint:
            GET /api/v5/market/books?instId={BASE-QUOTE}&sz={depth}
        """
        params = {"instId": to_dashed(symbol), "sz": min(depth, MAX_BOOK_DEPTH)}
        payload = await self._get_market("/api/v5/market/books", params)
        return parse_books(payload, symbol)

    async def get_system_time(self) -> Optional[int]:
        """
        GET /api/v5/public/time - server time in ms, or None if unreachable.
        """
        try:
            payload = await self._get_market("/api/v5/public/time", {})
            data = unwrap_envelope(payload)
            return int(data[0]["ts"])
        except (UpstreamError, IndexError, KeyError, ValueError) as e:
            self.logger.warning(f"OKX time check failed: {e}")
            return None
