"""
CoinGecko REST API Client

CoinGecko is an aggregator rather than an exchange, so it is the last resort
in most failover lists. It has no order book and no native candles:
- Tickers come from /simple/price (price, 24h change %, 24h volume)
- Candles are synthesized from /coins/{id}/market_chart price points

API Documentation:
    https://docs.coingecko.com/reference/introduction

Estimations (documented, not exact):
    - 24h high/low: the larger/smaller of the current price and the price
      implied 24h ago by the reported change
    - Candle volume: the rolling 24h volume sample scaled to the bucket length
"""

import math
from typing import Any, Dict, List, Optional

from core.errors import UpstreamError
from core.schemas import Candle, PriceTick
from core.symbols import parse
from core.utils.time import current_utc_timestamp, interval_to_milliseconds, to_milliseconds
from exchanges.rest_client import RestClient, parsing


SOURCE = "coingecko"

# Base asset -> CoinGecko coin id
COIN_IDS: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "SOL": "solana",
    "XRP": "ripple",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "MATIC": "matic-network",
    "LTC": "litecoin",
}

DAY_MS = 86_400_000

# Public API serves at most 90 days of hourly points
MAX_CHART_DAYS = 90


def coin_id_for(symbol: str) -> str:
    """
    Map a canonical symbol to a CoinGecko coin id.

    Raises:
        UpstreamError: Base asset has no known coin id
    """
    base = parse(symbol).base
    coin_id = COIN_IDS.get(base)
    if coin_id is None:
        raise UpstreamError(SOURCE, f"no coin id for {symbol}")
    return coin_id


# ============================================
# Payload Parsers
# ============================================

def parse_simple_price(
    payload: Any,
    symbol: str,
    coin_id: str,
    received_at: Optional[int] = None
) -> PriceTick:
    """
    Parse a /simple/price response.

    Response Format:
        {"bitcoin": {"usd": 65000.0, "usd_24h_change": 1.88, "usd_24h_vol": 3.1e10}}
    """
    with parsing(SOURCE, "simple price"):
        if coin_id not in payload:
            raise UpstreamError(SOURCE, f"no price for {coin_id}")
        data = payload[coin_id]
        price = float(data["usd"])
        change_pct = float(data.get("usd_24h_change") or 0.0)
        change = price * change_pct / 100
        price_24h_ago = price - change
        return PriceTick(
            symbol=symbol,
            price=price,
            price_change=change,
            price_change_percent=change_pct,
            high_24h=max(price, price_24h_ago),
            low_24h=max(min(price, price_24h_ago), 0.0),
            volume_24h=float(data.get("usd_24h_vol") or 0.0),
            timestamp=received_at or current_utc_timestamp(),
            source=SOURCE,
        )


def synthesize_candles(payload: Any, interval: str, limit: int) -> List[Candle]:
    """
    Bucket market_chart price points into OHLC candles.

    Response Format:
        {"prices": [[1704110400000, 65000.1], ...],
         "total_volumes": [[1704110400000, 3.1e10], ...]}

    Each bucket starts at a multiple of the interval length; open/close are the
    first/last price in the bucket, high/low the extremes. Only the newest
    `limit` buckets are returned, oldest first.
    """
    bucket_ms = interval_to_milliseconds(interval)

    with parsing(SOURCE, "market chart"):
        prices = payload["prices"]
        volumes = {to_milliseconds(ts): float(vol) for ts, vol in payload.get("total_volumes", [])}

        buckets: Dict[int, List[float]] = {}
        bucket_volume: Dict[int, float] = {}
        for ts, price in prices:
            ts = to_milliseconds(ts)
            start = ts - ts % bucket_ms
            buckets.setdefault(start, []).append(float(price))
            if ts in volumes:
                bucket_volume[start] = volumes[ts] * bucket_ms / DAY_MS

        candles = [
            Candle(
                timestamp=start,
                open=points[0],
                high=max(points),
                low=min(points),
                close=points[-1],
                volume=bucket_volume.get(start, 0.0),
            )
            for start, points in sorted(buckets.items())
        ]

    if not candles:
        raise UpstreamError(SOURCE, "empty market chart result")
    return candles[-limit:]


def chart_days(interval: str, limit: int) -> int:
    """Days of history needed to cover `limit` candles, clamped to 1..90."""
    needed = math.ceil(limit * interval_to_milliseconds(interval) / DAY_MS)
    return max(1, min(needed, MAX_CHART_DAYS))


# ============================================
# Client
# ============================================

class CoinGeckoAPIClient(RestClient):
    """Async HTTP client for CoinGecko public endpoints."""

    BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        super().__init__(SOURCE, base_url or self.BASE_URL, timeout=timeout)

    async def get_simple_price(self, symbol: str) -> PriceTick:
        """
        CoinGecko Endpoint:
            GET /simple/price?ids={id}&vs_currencies=usd&include_24hr_change=true&include_24hr_vol=true
        """
        coin_id = coin_id_for(symbol)
        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_24hr_vol": "true",
        }
        payload = await self._get("/simple/price", params)
        return parse_simple_price(payload, symbol, coin_id)

    async def get_market_chart(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        """
        CoinGecko Endpoint:
            GET /coins/{id}/market_chart?vs_currency=usd&days={days}

        Raises:
            UpstreamError: Unknown coin, unsupported interval, empty chart
        """
        coin_id = coin_id_for(symbol)
        try:
            days = chart_days(interval, limit)
        except ValueError as e:
            raise UpstreamError(SOURCE, str(e))

        payload = await self._get(f"/coins/{coin_id}/market_chart", {"vs_currency": "usd", "days": days})
        try:
            return synthesize_candles(payload, interval, limit)
        except ValueError as e:
            raise UpstreamError(SOURCE, str(e))

    async def ping(self) -> bool:
        """GET /ping - returns False instead of raising."""
        try:
            await self._get("/ping")
            return True
        except UpstreamError as e:
            self.logger.warning(f"CoinGecko ping failed: {e}")
            return False
