"""
Error Taxonomy

Three levels of failure, each handled at a different layer:

    UpstreamError          one provider, one attempt (HTTP error, timeout,
                           malformed payload, empty or crossed book).
                           Always recovered by the FailoverFetcher.
    AllSourcesFailedError  every adapter in a priority list failed for one
                           fetch. Logged by the scheduler (cache entry left
                           stale), turned into None / cached data by
                           on-demand callers.
    MarketConnectionError  connect() could not fetch anything for any symbol.
                           Surfaced to the UI as a connectivity failure.
"""

from typing import List, Tuple


class MarketDataError(Exception):
    """Base class for all market data engine errors."""


class UpstreamError(MarketDataError):
    """
    A single source failed a single attempt.

    Attributes:
        source: Adapter name (e.g. "binance")
        cause: Human-readable reason
    """

    def __init__(self, source: str, cause: str):
        self.source = source
        self.cause = cause
        super().__init__(f"{source}: {cause}")


class AllSourcesFailedError(MarketDataError):
    """
    Every source in the priority list failed.

    Attributes:
        kind: Data kind that was requested ("price", "candle", "orderbook")
        symbol: Canonical symbol
        failures: One (source, reason) pair per adapter, in priority order
    """

    def __init__(self, kind: str, symbol: str, failures: List[Tuple[str, str]]):
        self.kind = kind
        self.symbol = symbol
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(f"{source}: {reason}" for source, reason in self.failures)
        else:
            detail = "no sources configured"
        super().__init__(f"All sources failed to fetch {kind} for {symbol} ({detail})")

    @property
    def sources(self) -> List[str]:
        return [source for source, _ in self.failures]


class MarketConnectionError(MarketDataError):
    """connect() found zero fetchable symbols."""
