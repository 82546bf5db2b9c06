"""
Source Adapter - Abstract Contract for Upstream Providers

Every upstream market data provider (Binance, OKX, CoinGecko, a backend proxy)
is wrapped in a SourceAdapter. The FailoverFetcher only ever talks to this
interface, so providers can be added, removed or reordered through
configuration alone.

Capabilities System:
    A provider may support only some of the three operations. Each adapter
    declares what it supports; the default implementation of an unsupported
    operation raises UpstreamError, so the fetcher treats it like any other
    failed attempt.

        capabilities = {
            "ticker": True,
            "candles": True,
            "orderbook": False,  # CoinGecko has no order book
        }

Contract for implementations:
    - Return canonical schema objects (core.schemas), never raw payloads
    - Make exactly one attempt; retry/backoff belongs to the caller
    - Translate every failure (HTTP status, malformed JSON, provider error
      code, empty or crossed result) into UpstreamError(self.name, cause)

Example:
    class ExampleSource(SourceAdapter):
        name = "example"
        capabilities = {"ticker": True, "candles": False, "orderbook": False}

        async def fetch_ticker(self, symbol):
            payload = await self.client.get_ticker(symbol)
            return parse_ticker(payload, symbol)
"""

from abc import ABC
from typing import Dict, List

from core.errors import UpstreamError
from core.schemas import Candle, OrderBookSnapshot, PriceTick, SourceDescriptor


class SourceAdapter(ABC):
    """
    Abstract Base Class for Source Adapters

    Class Attributes:
        name: Unique identifier (lowercase, e.g. "binance", "okx")
        capabilities: Which of "ticker", "candles", "orderbook" are supported

    Optional Methods (can be overridden):
        - initialize: Create HTTP sessions
        - shutdown: Close HTTP sessions
        - health_check: Lightweight reachability check
    """

    name: str

    capabilities: Dict[str, bool] = {
        "ticker": False,
        "candles": False,
        "orderbook": False,
    }

    # ============================================
    # Data Operations
    # ============================================

    async def fetch_ticker(self, symbol: str) -> PriceTick:
        """
        Fetch the 24h ticker for a canonical symbol.

        Raises:
            UpstreamError: On any provider failure or if unsupported
        """
        raise UpstreamError(self.name, "ticker not supported")

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        """
        Fetch the most recent candles, oldest first.

        Args:
            symbol: Canonical symbol (e.g. "BTCUSDT")
            interval: Candle interval ("1m", "5m", "1h", "1d", ...)
            limit: Maximum number of candles

        Raises:
            UpstreamError: On any provider failure, empty result, or if unsupported
        """
        raise UpstreamError(self.name, "candles not supported")

    async def fetch_order_book(self, symbol: str, depth: int = 20) -> OrderBookSnapshot:
        """
        Fetch an order book snapshot.

        Raises:
            UpstreamError: On any provider failure, crossed/empty book, or if unsupported
        """
        raise UpstreamError(self.name, "order book not supported")

    # ============================================
    # Optional Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """Set up sessions. Should be idempotent."""
        pass

    async def shutdown(self) -> None:
        """Release sessions. Should not raise."""
        pass

    async def health_check(self) -> bool:
        """Return False rather than raising when the provider is unreachable."""
        return True

    # ============================================
    # Helper Methods
    # ============================================

    def supports(self, capability: str) -> bool:
        """
        Check if this adapter supports a capability.

        Example:
            >>> if adapter.supports("orderbook"):
            ...     book = await adapter.fetch_order_book("BTCUSDT")
        """
        return self.capabilities.get(capability, False)

    def describe(self, priority: int) -> SourceDescriptor:
        return SourceDescriptor(name=self.name, priority=priority, capabilities=dict(self.capabilities))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"
