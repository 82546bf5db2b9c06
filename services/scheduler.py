"""
Refresh Scheduler

Owns the connection state machine and every scheduled fetch:

    Disconnected --connect()--> Connecting --any symbol loaded--> Connected
                                    |
                                    +--nothing loaded--> Disconnected (MarketConnectionError)

    Connected --a price pass where every symbol fails--> Connecting
    Connecting --a price pass with any success--> Connected
    any state --disconnect()--> Disconnected (a connect() still loading returns
                                             without starting the loop)

connect() loads the current price and the initial candle history of every
tracked symbol in parallel (price and candles together, bounded by a
semaphore created on first use), then starts the periodic loop. The loop
re-runs the price pass every `refresh_interval` seconds while Connected and
every `reconnect_delay` seconds while Connecting. There is no terminal failure
state: a Connecting scheduler keeps trying until disconnect().

Each symbol is fetched, cached and logged independently; one symbol failing
never aborts the pass for the others. Writes use cache version tokens so a
slow response cannot overwrite newer data.

When enabled, a Binance ticker stream pushes PriceTicks into the cache between
polling passes. If the stream dies, the failure is logged and polling carries on.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from core.config import Settings, settings as default_settings
from core.errors import AllSourcesFailedError, MarketConnectionError
from core.logging import get_logger
from core.schemas import DataKind, OrderBookSnapshot
from core.source_registry import SourceRegistry
from core.symbols import normalize
from exchanges.binance.ws_client import BinanceTickerStream
from services.failover import FailoverFetcher
from storage.market_cache import MarketCache


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RefreshScheduler:
    """
    Periodic and on-demand refresh of the market cache.

    Args:
        registry: Supplies adapters per data kind in priority order
        fetcher: FailoverFetcher used for every fetch
        cache: MarketCache receiving every successful result
        symbols: Tracked symbols (defaults to configuration)
        sleep: Awaitable sleep used by the loop (injectable for tests)
        config: Settings used for intervals, limits and the ticker stream

    Example:
        >>> scheduler = RefreshScheduler(registry, FailoverFetcher(), MarketCache())
        >>> await scheduler.connect()
        >>> scheduler.state
        <ConnectionState.CONNECTED: 'connected'>
        >>> await scheduler.disconnect()
    """

    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: FailoverFetcher,
        cache: MarketCache,
        symbols: Optional[List[str]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        config: Optional[Settings] = None
    ):
        self.config = config or default_settings
        self.registry = registry
        self.fetcher = fetcher
        self.cache = cache
        self.symbols = [normalize(s) for s in (symbols if symbols is not None else self.config.symbols_list)]

        self.refresh_interval = self.config.refresh_interval
        self.reconnect_delay = self.config.reconnect_delay
        self.candle_interval = self.config.default_interval
        self.candle_limit = self.config.candle_retention

        self._sleep = sleep
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._state = ConnectionState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._logger = get_logger(__name__)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _limiter(self) -> asyncio.Semaphore:
        # Created on first use so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        return self._semaphore

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._logger.info(f"Market connection: {self._state.value} -> {state.value}")
            self._state = state

    # ============================================
    # Connect / Disconnect
    # ============================================

    async def connect(self) -> None:
        """
        Load every tracked symbol once, then start the periodic loop.

        Raises:
            MarketConnectionError: Neither price nor candles could be fetched
                for any symbol
        """
        if self._state is not ConnectionState.DISCONNECTED:
            self._logger.debug(f"connect() ignored, already {self._state.value}")
            return

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        self._logger.info(f"Connecting to market data for {len(self.symbols)} symbol(s)...")

        outcomes = await asyncio.gather(*(self._initial_load(symbol) for symbol in self.symbols))
        loaded = sum(1 for ok in outcomes if ok)

        if generation != self._generation:
            # disconnect() ran while the initial load was in flight
            self._logger.info(f"Initial load finished after disconnect ({loaded} symbol(s) loaded), not starting")
            return

        if loaded == 0:
            self._set_state(ConnectionState.DISCONNECTED)
            raise MarketConnectionError(
                f"No market data available for any of {len(self.symbols)} symbol(s)"
            )

        self._logger.info(f"Loaded {loaded}/{len(self.symbols)} symbol(s)")
        self._set_state(ConnectionState.CONNECTED)
        self._task = asyncio.create_task(self._run(), name="market_refresh")

        if self.config.enable_ws_ticker and self.registry.has_source("binance"):
            self._stream_task = asyncio.create_task(self._stream_prices(), name="binance_ticker_stream")
            self._stream_task.add_done_callback(self._on_stream_done)

    async def disconnect(self) -> None:
        """Stop all timers; cached data is kept. A connect() still loading will not start."""
        self._generation += 1
        self._set_state(ConnectionState.DISCONNECTED)
        for task in (self._task, self._stream_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._stream_task = None

    async def _initial_load(self, symbol: str) -> bool:
        price_ok, candles_ok = await asyncio.gather(
            self.refresh_price(symbol),
            self._refresh_candles(symbol, self.candle_interval, self.candle_limit),
        )
        return price_ok or candles_ok

    # ============================================
    # Core Loop
    # ============================================

    async def _run(self) -> None:
        while self._state is not ConnectionState.DISCONNECTED:
            if self._state is ConnectionState.CONNECTED:
                delay = self.refresh_interval
            else:
                delay = self.reconnect_delay
            await self._sleep(delay)

            if self._state is ConnectionState.DISCONNECTED:
                break
            try:
                await self.refresh_prices()
            except Exception as e:
                self._logger.error(f"Refresh cycle error: {e}")

    async def _stream_prices(self) -> None:
        async with BinanceTickerStream(self.symbols, base_url=self.config.binance_ws_url) as stream:
            async for tick in stream.listen():
                version = self.cache.next_version(tick.symbol, DataKind.PRICE)
                self.cache.put(tick.symbol, DataKind.PRICE, tick, version=version)

    def _on_stream_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error(f"Ticker stream stopped: {type(error).__name__}: {error}")
        else:
            self._logger.warning("Ticker stream ended; polling continues")

    # ============================================
    # Refresh Passes
    # ============================================

    async def refresh_prices(self) -> int:
        """
        Refresh the price of every tracked symbol.

        Returns:
            Number of symbols refreshed successfully
        """
        outcomes = await asyncio.gather(*(self.refresh_price(symbol) for symbol in self.symbols))
        refreshed = sum(1 for ok in outcomes if ok)

        if self._state is not ConnectionState.DISCONNECTED:
            if refreshed == 0 and self.symbols:
                self._logger.warning("Price pass failed for every symbol, reconnecting")
                self._set_state(ConnectionState.CONNECTING)
            elif refreshed > 0:
                self._set_state(ConnectionState.CONNECTED)

        self._logger.debug(f"Price pass: {refreshed}/{len(self.symbols)} refreshed")
        return refreshed

    async def refresh_candles(
        self,
        symbol: Optional[str] = None,
        interval: Optional[str] = None,
        limit: Optional[int] = None
    ) -> int:
        """Refresh candle history for one symbol, or every tracked symbol."""
        targets = [normalize(symbol)] if symbol else self.symbols
        outcomes = await asyncio.gather(*(
            self._refresh_candles(s, interval or self.candle_interval, limit or self.candle_limit)
            for s in targets
        ))
        return sum(1 for ok in outcomes if ok)

    async def refresh_order_book(self, symbol: str, depth: Optional[int] = None) -> Optional[OrderBookSnapshot]:
        """Fetch and cache one order book; None if every source failed."""
        symbol = normalize(symbol)
        async with self._limiter():
            version = self.cache.next_version(symbol, DataKind.ORDERBOOK)
            try:
                result = await self.fetcher.fetch(
                    DataKind.ORDERBOOK,
                    symbol,
                    self.registry.sources_for(DataKind.ORDERBOOK),
                    depth=depth or self.config.order_book_depth,
                )
            except AllSourcesFailedError as e:
                self._logger.warning(f"Order book for {symbol} left stale: {e}")
                return None

        self.cache.put(symbol, DataKind.ORDERBOOK, result.data, version=version)
        return result.data

    # ============================================
    # Per-Symbol Fetches
    # ============================================

    async def refresh_price(self, symbol: str) -> bool:
        """Fetch and cache one price; False if every source failed."""
        symbol = normalize(symbol)
        async with self._limiter():
            version = self.cache.next_version(symbol, DataKind.PRICE)
            try:
                result = await self.fetcher.fetch(DataKind.PRICE, symbol, self.registry.sources_for(DataKind.PRICE))
            except AllSourcesFailedError as e:
                self._logger.warning(f"Price for {symbol} left stale: {e}")
                return False

        self.cache.put(symbol, DataKind.PRICE, result.data, version=version)
        return True

    async def _refresh_candles(self, symbol: str, interval: str, limit: int) -> bool:
        async with self._limiter():
            version = self.cache.next_version(symbol, DataKind.CANDLE, interval)
            try:
                result = await self.fetcher.fetch(
                    DataKind.CANDLE,
                    symbol,
                    self.registry.sources_for(DataKind.CANDLE),
                    interval=interval,
                    limit=limit,
                )
            except AllSourcesFailedError as e:
                self._logger.warning(f"{interval} candles for {symbol} left stale: {e}")
                return False

        self.cache.put(symbol, DataKind.CANDLE, result.data, interval=interval, version=version)
        return True
