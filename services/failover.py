"""
Failover Fetcher

Runs one fetch (one kind, one symbol) against an ordered list of adapters and
returns the first success, tagged with the adapter that produced it.

Rules:
    - The adapter list is copied before the first attempt, so priority
      changes made meanwhile only affect later fetches
    - Each attempt is bounded by asyncio.wait_for(timeout)
    - UpstreamError, timeout and missing capability all mean "try the next
      adapter"; no adapter is tried twice within one fetch
    - If every adapter fails, AllSourcesFailedError lists exactly one
      (source, reason) pair per adapter, in priority order
    - An empty adapter list fails immediately

Attempts run sequentially; the first adapter in the list always gets the
first chance to answer.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from core.config import settings
from core.errors import AllSourcesFailedError, UpstreamError
from core.logging import get_logger
from core.schemas import CAPABILITY_FOR_KIND, DataKind, FetchResult, OrderBookSnapshot, PriceTick
from core.source_adapter import SourceAdapter
from core.symbols import normalize


class FailoverFetcher:
    """
    Sequential failover across adapters.

    Attributes:
        timeout: Per-attempt timeout in seconds
        last_source: Adapter that answered the most recent successful fetch

    Example:
        >>> fetcher = FailoverFetcher(timeout=5.0)
        >>> result = await fetcher.fetch("price", "BTCUSDT", registry.sources_for("price"))
        >>> result.source, result.data.price
        ('okx', 65000.0)
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self.last_source: Optional[str] = None
        self._logger = get_logger(__name__)

    async def fetch(
        self,
        kind: Union[DataKind, str],
        symbol: str,
        adapters: Iterable[SourceAdapter],
        **params: Any
    ) -> FetchResult:
        """
        Fetch one piece of data with failover.

        Args:
            kind: "price", "candle" or "orderbook"
            symbol: Any symbol spelling (normalized before use)
            adapters: Adapters in priority order
            **params: interval/limit for candles, depth for order books

        Raises:
            AllSourcesFailedError: No adapter produced a result
        """
        kind = DataKind(kind)
        symbol = normalize(symbol)
        candidates: Tuple[SourceAdapter, ...] = tuple(adapters)
        capability = CAPABILITY_FOR_KIND[kind]
        failures: List[Tuple[str, str]] = []

        for position, adapter in enumerate(candidates):
            if not adapter.supports(capability):
                failures.append((adapter.name, f"{capability} not supported"))
                continue

            try:
                data = await asyncio.wait_for(self._call(adapter, kind, symbol, params), timeout=self.timeout)
            except UpstreamError as e:
                reason = e.cause
            except asyncio.TimeoutError:
                reason = f"timeout after {self.timeout:.1f}s"
            except Exception as e:
                reason = f"unexpected {type(e).__name__}: {e}"
                self._logger.error(f"{adapter.name} raised outside its error contract for {kind.value} {symbol}: {e}")
            else:
                if kind is DataKind.CANDLE and not data:
                    reason = "empty result"
                else:
                    if position > 0:
                        self._logger.info(f"{kind.value} {symbol}: served by fallback source {adapter.name}")
                    self.last_source = adapter.name
                    return FetchResult(source=adapter.name, data=_tag_source(data, adapter.name))

            self._logger.warning(f"{adapter.name} failed {kind.value} {symbol}: {reason}")
            failures.append((adapter.name, reason))

        error = AllSourcesFailedError(kind.value, symbol, failures)
        self._logger.error(str(error))
        raise error

    async def _call(self, adapter: SourceAdapter, kind: DataKind, symbol: str, params: Dict[str, Any]) -> Any:
        if kind is DataKind.PRICE:
            return await adapter.fetch_ticker(symbol)
        if kind is DataKind.CANDLE:
            return await adapter.fetch_candles(
                symbol,
                params.get("interval") or settings.default_interval,
                params.get("limit", 100),
            )
        return await adapter.fetch_order_book(symbol, params.get("depth", settings.order_book_depth))


def _tag_source(data: Any, source: str) -> Any:
    if isinstance(data, (PriceTick, OrderBookSnapshot)) and data.source != source:
        return data.model_copy(update={"source": source})
    return data
