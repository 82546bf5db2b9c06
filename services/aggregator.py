"""
Price Aggregator

Prices one symbol with every enabled ticker source at once and reports how far
they disagree. The FailoverFetcher stops at the first answer; the aggregator
asks all of them concurrently, so it is an on-demand cross-check and is never
part of the scheduled refresh.

Scoring:
    - quality_score starts at 100 and loses one point per second the quote
      is older than the freshness window
    - the reference quote is the best-quality one; ties go to the source
      listed first
    - deviation_percent = |price - reference| / reference * 100
    - confidence = max(0, 100 - 10 * largest deviation)

A source that fails, times out or cannot serve tickers is reported under
failures and does not stop the others.
"""

import asyncio
from typing import Callable, Iterable, List, Optional, Tuple

from core.config import settings
from core.errors import AllSourcesFailedError, UpstreamError
from core.logging import get_logger
from core.schemas import AggregatedPrice, PriceTick, SourceQuote
from core.source_adapter import SourceAdapter
from core.symbols import normalize
from core.utils.time import current_utc_timestamp


class PriceAggregator:
    """
    Concurrent cross-source price comparison.

    Attributes:
        timeout: Per-source timeout in seconds
        max_deviation: Deviation (percent) above which a warning is logged
        freshness_ms: Age up to which a quote keeps full quality

    Example:
        >>> aggregator = PriceAggregator(timeout=5.0)
        >>> result = await aggregator.aggregate("BTCUSDT", registry.sources_for("price"))
        >>> result.source, result.confidence
        ('binance', 99.4)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Optional[Callable[[], int]] = None,
        max_deviation: Optional[float] = None,
        freshness_ms: Optional[int] = None
    ):
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self.clock = clock or current_utc_timestamp
        self.max_deviation = max_deviation if max_deviation is not None else settings.max_price_deviation
        self.freshness_ms = freshness_ms if freshness_ms is not None else int(settings.quote_freshness * 1000)
        self._logger = get_logger(__name__)

    async def aggregate(self, symbol: str, adapters: Iterable[SourceAdapter]) -> AggregatedPrice:
        """
        Fetch a ticker from every adapter and compare the answers.

        Raises:
            AllSourcesFailedError: No adapter produced a ticker
        """
        symbol = normalize(symbol)
        candidates = tuple(adapters)

        outcomes = await asyncio.gather(*(self._quote(adapter, symbol) for adapter in candidates))

        ticks: List[PriceTick] = []
        failures: List[Tuple[str, str]] = []
        for adapter, (tick, reason) in zip(candidates, outcomes):
            if tick is None:
                failures.append((adapter.name, reason))
            else:
                ticks.append(tick)

        if not ticks:
            error = AllSourcesFailedError("price", symbol, failures)
            self._logger.error(str(error))
            raise error

        now = self.clock()
        scored = [(tick, self._quality(now - tick.timestamp)) for tick in ticks]
        reference, _ = max(scored, key=lambda pair: pair[1])

        quotes = [
            SourceQuote(
                source=tick.source,
                price=tick.price,
                deviation_percent=abs(tick.price - reference.price) / reference.price * 100,
                age_ms=max(0, now - tick.timestamp),
                quality_score=quality,
                timestamp=tick.timestamp,
            )
            for tick, quality in scored
        ]
        max_deviation = max(quote.deviation_percent for quote in quotes)

        if max_deviation > self.max_deviation:
            self._logger.warning(
                f"{symbol}: sources disagree by {max_deviation:.2f}% "
                f"(reference {reference.source} @ {reference.price})"
            )

        return AggregatedPrice(
            symbol=symbol,
            price=reference.price,
            source=reference.source,
            confidence=max(0.0, 100 - max_deviation * 10),
            max_deviation_percent=max_deviation,
            quotes=quotes,
            failures=dict(failures),
            timestamp=now,
        )

    async def _quote(self, adapter: SourceAdapter, symbol: str) -> Tuple[Optional[PriceTick], str]:
        if not adapter.supports("ticker"):
            return None, "ticker not supported"

        try:
            tick = await asyncio.wait_for(adapter.fetch_ticker(symbol), timeout=self.timeout)
        except UpstreamError as e:
            reason = e.cause
        except asyncio.TimeoutError:
            reason = f"timeout after {self.timeout:.1f}s"
        except Exception as e:
            reason = f"unexpected {type(e).__name__}: {e}"
            self._logger.error(f"{adapter.name} raised outside its error contract for price {symbol}: {e}")
        else:
            if tick.source != adapter.name:
                tick = tick.model_copy(update={"source": adapter.name})
            return tick, ""

        self._logger.warning(f"{adapter.name} failed price {symbol} during comparison: {reason}")
        return None, reason

    def _quality(self, age_ms: int) -> float:
        overdue_ms = age_ms - self.freshness_ms
        if overdue_ms <= 0:
            return 100.0
        return max(0.0, 100.0 - overdue_ms / 1000)
