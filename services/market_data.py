"""
Market Data Service

The object UI code and the HTTP layer talk to. It wires together the source
registry, failover fetcher, cache, subscription hub and refresh scheduler,
and exposes:

    connect() / disconnect()            start and stop scheduled refreshes
    subscribe() / unsubscribe()         live updates per data kind
    get_price_data()                    cached tickers, tracked symbol order
    get_trading_pairs()                 static pair configuration
    generate_historical_candles()       on-demand candles, cached fallback
    fetch_order_book()                  on-demand order book, None on failure
    is_connected_to_market()            connection state == connected
    get_current_data_source()           adapter behind the latest success
    aggregate_price()                   one symbol priced by every source
    get_source_status() / set_source_enabled() / set_source_priority()
                                        runtime source management

Nothing here is a module-level singleton; build_market_data_service()
assembles the default stack from configuration.

Usage:
    service = build_market_data_service()
    if await service.connect():
        service.subscribe("price", on_tick)
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Union

from core.config import Settings, settings as default_settings
from core.errors import AllSourcesFailedError, MarketConnectionError
from core.logging import get_logger
from core.schemas import (
    AggregatedPrice,
    Candle,
    DataKind,
    FetchResult,
    OrderBookSnapshot,
    PriceTick,
    SourceStatus,
    TradingPair,
)
from core.source_registry import SourceRegistry, build_default_registry
from core.symbols import normalize, parse
from services.aggregator import PriceAggregator
from services.failover import FailoverFetcher
from services.scheduler import ConnectionState, RefreshScheduler
from services.subscription_hub import Callback, SubscriptionHub
from storage.market_cache import MarketCache


class MarketDataService:
    """
    Consumer-facing market data API.

    Args:
        config: Settings (defaults to the global instance)
        registry: Source adapters and priorities (defaults to configured sources)
        fetcher / cache / hub: Injectable components
        sleep: Sleep used by the refresh loop
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        registry: Optional[SourceRegistry] = None,
        fetcher: Optional[FailoverFetcher] = None,
        cache: Optional[MarketCache] = None,
        hub: Optional[SubscriptionHub] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.config = config or default_settings
        self.hub = hub or SubscriptionHub()
        self.registry = registry if registry is not None else build_default_registry(self.config)
        self.fetcher = fetcher or FailoverFetcher(timeout=self.config.fetch_timeout)
        self.cache = cache or MarketCache(
            retention=self.config.candle_retention,
            hub=self.hub,
            default_interval=self.config.default_interval,
        )
        if self.cache.hub is None:
            self.cache.hub = self.hub

        self.scheduler = RefreshScheduler(
            self.registry,
            self.fetcher,
            self.cache,
            symbols=self.config.symbols_list,
            sleep=sleep,
            config=self.config,
        )
        self.aggregator = PriceAggregator(
            timeout=self.config.fetch_timeout,
            clock=self.cache.clock,
            max_deviation=self.config.max_price_deviation,
            freshness_ms=int(self.config.quote_freshness * 1000),
        )
        self._sources_ready = False
        self._logger = get_logger(__name__)

    # ============================================
    # Connection Lifecycle
    # ============================================

    async def connect(self) -> bool:
        """
        Initialize sources and load every tracked symbol.

        Returns:
            True once connected, False if nothing could be fetched
        """
        if not self._sources_ready:
            await self.registry.initialize_all()
            self._sources_ready = True

        try:
            await self.scheduler.connect()
        except MarketConnectionError as e:
            self._logger.error(f"Market connection failed: {e}")
            return False
        return True

    async def disconnect(self) -> None:
        """Stop refreshing; cached data stays readable."""
        await self.scheduler.disconnect()

    async def close(self) -> None:
        """Disconnect and release every adapter session."""
        await self.disconnect()
        if self._sources_ready:
            await self.registry.shutdown_all()
            self._sources_ready = False

    @property
    def connection_state(self) -> ConnectionState:
        return self.scheduler.state

    def is_connected_to_market(self) -> bool:
        return self.scheduler.state is ConnectionState.CONNECTED

    def get_current_data_source(self) -> Optional[str]:
        return self.fetcher.last_source

    # ============================================
    # Subscriptions
    # ============================================

    def subscribe(self, kind: Union[DataKind, str], callback: Callback) -> None:
        self.hub.subscribe(kind, callback)

    def unsubscribe(self, kind: Union[DataKind, str], callback: Callback) -> None:
        self.hub.unsubscribe(kind, callback)

    # ============================================
    # Reads
    # ============================================

    def get_price_data(self) -> List[PriceTick]:
        """Cached tickers in tracked symbol order; symbols never loaded are skipped."""
        ticks = [self.cache.get(symbol, DataKind.PRICE) for symbol in self.scheduler.symbols]
        return [tick for tick in ticks if tick is not None]

    def get_trading_pairs(self) -> List[TradingPair]:
        pairs = []
        for symbol in self.config.symbols_list:
            parts = parse(symbol)
            pairs.append(TradingPair(symbol=normalize(symbol), base_asset=parts.base, quote_asset=parts.quote))
        return pairs

    def get_cached_order_book(self, symbol: str) -> Optional[OrderBookSnapshot]:
        return self.cache.get(symbol, DataKind.ORDERBOOK)

    async def get_ticker(self, symbol: str) -> Optional[PriceTick]:
        """
        Cached ticker if fresher than two refresh intervals, otherwise a new fetch.

        Falls back to the stale cached ticker (or None) if every source fails.
        """
        max_age_ms = int(self.config.refresh_interval * 2000)
        if self.cache.is_stale(symbol, DataKind.PRICE, max_age_ms):
            await self.scheduler.refresh_price(symbol)
        return self.cache.get(symbol, DataKind.PRICE)

    # ============================================
    # On-Demand Fetches
    # ============================================

    async def fetch_candles(
        self,
        symbol: str,
        interval: Optional[str] = None,
        limit: int = 100,
        source: Optional[str] = None
    ) -> FetchResult:
        """
        Fetch candles with failover, or from one pinned source.

        Successful results are merged into the cache.

        Raises:
            AllSourcesFailedError: Every source (or the pinned one) failed
            ValueError: Pinned source is not registered
        """
        interval = interval or self.config.default_interval
        if source:
            adapters = [self.registry.get_source(source)]
        else:
            adapters = self.registry.sources_for(DataKind.CANDLE)

        version = self.cache.next_version(symbol, DataKind.CANDLE, interval)
        result = await self.fetcher.fetch(DataKind.CANDLE, symbol, adapters, interval=interval, limit=limit)
        self.cache.put(symbol, DataKind.CANDLE, result.data, interval=interval, version=version)
        return FetchResult(source=result.source, data=result.data[-limit:])

    async def generate_historical_candles(
        self,
        symbol: str,
        interval: Optional[str] = None,
        limit: int = 100
    ) -> List[Candle]:
        """
        Candles for a symbol, oldest first.

        If every source fails, the cached series (possibly empty) is returned.
        """
        try:
            result = await self.fetch_candles(symbol, interval, limit)
        except AllSourcesFailedError as e:
            self._logger.warning(f"Serving cached candles for {symbol}: {e}")
            cached = self.cache.get(symbol, DataKind.CANDLE, interval) or []
            return cached[-limit:]
        return result.data

    async def fetch_order_book(self, symbol: str, limit: Optional[int] = None) -> Optional[OrderBookSnapshot]:
        """Fresh order book, or None if every source failed."""
        return await self.scheduler.refresh_order_book(symbol, depth=limit)

    async def aggregate_price(self, symbol: str) -> AggregatedPrice:
        """
        Price one symbol with every enabled ticker source at once.

        The cache is not touched; scheduled refreshes keep using failover.

        Raises:
            AllSourcesFailedError: No enabled source answered
        """
        return await self.aggregator.aggregate(symbol, self.registry.sources_for(DataKind.PRICE))

    # ============================================
    # Source Management
    # ============================================

    def get_source_status(self) -> List[SourceStatus]:
        return self.registry.status()

    def set_source_enabled(self, name: str, enabled: bool) -> SourceStatus:
        """
        Enable or disable a source for every data kind.

        Raises:
            ValueError: If the source is not registered
        """
        self.registry.set_enabled(name, enabled)
        return next(s for s in self.registry.status() if s.name == name.lower())

    def set_source_priority(self, kind: Union[DataKind, str], names: List[str]) -> None:
        """Replace one kind's failover order; fetches already running keep the old one."""
        self.registry.set_priority(kind, names)


def build_market_data_service(config: Optional[Settings] = None) -> MarketDataService:
    """
    Assemble the default stack: configured sources, failover fetcher, cache
    publishing to a fresh hub, and a refresh scheduler.
    """
    config = config or default_settings
    hub = SubscriptionHub()
    return MarketDataService(
        config=config,
        registry=build_default_registry(config),
        fetcher=FailoverFetcher(timeout=config.fetch_timeout),
        cache=MarketCache(retention=config.candle_retention, hub=hub, default_interval=config.default_interval),
        hub=hub,
    )
