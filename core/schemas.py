"""
Normalized Data Schemas

This module defines Pydantic models for the canonical market data model.

Key Principle:
    Regardless of which provider answered (Binance, OKX, CoinGecko, a backend
    proxy), results are normalized into these schemas before they reach the
    cache. Nothing downstream of an adapter ever sees a raw provider payload.

Models:
    - PriceTick: 24h ticker statistics for one symbol
    - Candle: one OHLCV bar
    - CandleUpdate: payload pushed to candle subscribers
    - OrderBookLevel / OrderBookSnapshot: depth snapshot, validated uncrossed
    - TradingPair: static symbol configuration
    - SourceDescriptor: name, priority rank and capabilities of an adapter
    - SourceStatus: enabled flag and per-kind rank of a registered source
    - FetchResult: data tagged with the source that produced it
    - SourceQuote / AggregatedPrice: one symbol priced by every source at once
    - ProxyResponse: {success, data, source, message} wire envelope

All timestamps are epoch milliseconds (int).
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.symbols import normalize


class DataKind(str, Enum):
    """Data kinds served by the engine; also the subscription channels."""

    PRICE = "price"
    CANDLE = "candle"
    ORDERBOOK = "orderbook"


# Capability name each data kind requires from an adapter
CAPABILITY_FOR_KIND = {
    DataKind.PRICE: "ticker",
    DataKind.CANDLE: "candles",
    DataKind.ORDERBOOK: "orderbook",
}


# ============================================
# Ticker Schema
# ============================================

class PriceTick(BaseModel):
    """
    24h ticker snapshot for one symbol.

    Attributes:
        symbol: Canonical symbol (normalized by validator)
        price: Last traded price
        price_change: Absolute 24h change
        price_change_percent: 24h change in percent (2.5 == 2.5%)
        high_24h / low_24h: 24h range
        volume_24h: 24h volume as reported by the provider
        timestamp: Fetch completion time in ms (not the provider's own time)
        source: Adapter that produced the tick

    Example:
        >>> PriceTick(symbol="BTC-USDT", price=65000, price_change=1200,
        ...           price_change_percent=1.88, high_24h=65500, low_24h=63100,
        ...           volume_24h=18250.4, timestamp=1704110400000).symbol
        'BTCUSDT'
    """

    symbol: str
    price: float = Field(..., gt=0, description="Last traded price")
    price_change: float = Field(0.0, description="Absolute 24h price change")
    price_change_percent: float = Field(0.0, description="24h change in percent")
    high_24h: float = Field(..., ge=0)
    low_24h: float = Field(..., ge=0)
    volume_24h: float = Field(..., ge=0)
    timestamp: int = Field(..., ge=0, description="Fetch completion time (epoch ms)")
    source: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Store the canonical spelling"""
        return normalize(v)


# ============================================
# Candle Schemas
# ============================================

class Candle(BaseModel):
    """
    One OHLCV bar. timestamp is the bar's open time in ms.

    Notes:
        - Prices can be 0.0 on illiquid pairs, so only ge=0 is enforced
        - Candle series are kept oldest first
    """

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(..., ge=0)
    open: float = Field(..., ge=0)
    high: float = Field(..., ge=0)
    low: float = Field(..., ge=0)
    close: float = Field(..., ge=0)
    volume: float = Field(0.0, ge=0)


class CandleUpdate(BaseModel):
    """Newest candle of a series that was just written to the cache."""

    symbol: str
    interval: str
    candle: Candle


# ============================================
# Order Book Schemas
# ============================================

class OrderBookLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = Field(..., gt=0)
    amount: float = Field(..., ge=0)


class OrderBookSnapshot(BaseModel):
    """
    Full depth snapshot, replaced wholesale on every fetch.

    The validator sorts bids descending and asks ascending, then rejects:
        - a book with both sides empty (semantically empty result)
        - a crossed book (best bid >= best ask)

    Adapters build snapshots inside their parse step, so a rejected book turns
    into an UpstreamError and never reaches the cache.
    """

    symbol: str
    bids: List[OrderBookLevel] = Field(default_factory=list)
    asks: List[OrderBookLevel] = Field(default_factory=list)
    timestamp: int = Field(..., ge=0)
    source: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        return normalize(v)

    @model_validator(mode="after")
    def validate_book(self) -> "OrderBookSnapshot":
        self.bids = sorted(self.bids, key=lambda level: level.price, reverse=True)
        self.asks = sorted(self.asks, key=lambda level: level.price)

        if not self.bids and not self.asks:
            raise ValueError("order book is empty")

        if self.bids and self.asks and self.bids[0].price >= self.asks[0].price:
            raise ValueError(
                f"crossed order book: best bid {self.bids[0].price} >= best ask {self.asks[0].price}"
            )
        return self

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid


# ============================================
# Configuration / Routing Schemas
# ============================================

class TradingPair(BaseModel):
    symbol: str
    base_asset: str
    quote_asset: str


class SourceDescriptor(BaseModel):
    """Static description of an adapter's place in a failover list."""

    model_config = ConfigDict(frozen=True)

    name: str
    priority: int = Field(..., ge=0, description="0 = tried first")
    capabilities: Dict[str, bool]


class SourceStatus(BaseModel):
    """Runtime status of a registered source."""

    name: str
    enabled: bool
    capabilities: Dict[str, bool]
    ranks: Dict[str, Optional[int]] = Field(default_factory=dict, description="Position per data kind, None if unlisted")


class FetchResult(BaseModel):
    """Data returned by the FailoverFetcher, tagged with the answering source."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: str
    data: Any


# ============================================
# Cross-Source Comparison Schemas
# ============================================

class SourceQuote(BaseModel):
    """
    One source's price for a symbol, compared against the reference price.

    Attributes:
        deviation_percent: |price - reference| / reference * 100
        age_ms: How old the quote was when the comparison was made
        quality_score: 0-100, reduced for quotes older than the freshness window
    """

    source: str
    price: float = Field(..., gt=0)
    deviation_percent: float = Field(..., ge=0)
    age_ms: int = Field(..., ge=0)
    quality_score: float = Field(..., ge=0, le=100)
    timestamp: int = Field(..., ge=0)


class AggregatedPrice(BaseModel):
    """
    A symbol priced by every enabled ticker source at once.

    The reference is the highest-priority source that answered; confidence
    drops 10 points per percent of the largest deviation from it.

    Example:
        {"symbol": "BTCUSDT", "price": 65000.0, "source": "binance",
         "confidence": 99.2, "max_deviation_percent": 0.08,
         "quotes": [...], "failures": {"coingecko": "HTTP 429: ..."}}
    """

    symbol: str
    price: float = Field(..., gt=0)
    source: str
    confidence: float = Field(..., ge=0, le=100)
    max_deviation_percent: float = Field(0.0, ge=0)
    quotes: List[SourceQuote]
    failures: Dict[str, str] = Field(default_factory=dict)
    timestamp: int = Field(..., ge=0)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        return normalize(v)


class ProxyResponse(BaseModel):
    """
    Envelope used by the backend proxy endpoints.

    Example:
        {"success": true, "data": [...], "source": "okx", "message": null}
    """

    success: bool
    data: Any = None
    source: str = "none"
    message: Optional[str] = None
