"""
Unit Tests for the Refresh Scheduler

These tests verify that RefreshScheduler:
- Loads every tracked symbol on connect() and tolerates partial failure
- Raises MarketConnectionError when nothing at all could be loaded
- Moves between Connected and Connecting based on refresh passes
- Uses refresh_interval while Connected and reconnect_delay while Connecting
- Stops its loop on disconnect() and keeps cached data, even mid-connect
- Caps outstanding requests and never lets an older fetch overwrite a newer one
- Logs a failed ticker stream without stopping the polling loop

Run with:
    pytest tests/unit/test_scheduler.py -v
"""

import asyncio

import pytest

from core.config import Settings
from core.errors import MarketConnectionError, UpstreamError
from core.schemas import Candle, OrderBookLevel, OrderBookSnapshot, PriceTick
from core.source_adapter import SourceAdapter
from core.source_registry import SourceRegistry
from services.failover import FailoverFetcher
from services.scheduler import ConnectionState, RefreshScheduler
from storage.market_cache import MarketCache


SYMBOLS = ["BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT"]


# ============================================
# Fakes
# ============================================

class FakeSource(SourceAdapter):
    """Answers only for the symbols it has data for"""

    name = "fake"
    capabilities = {"ticker": True, "candles": True, "orderbook": True}

    def __init__(self, prices=None, candles=None):
        self.prices = dict(prices or {})
        self.candles = dict(candles or {})

    async def fetch_ticker(self, symbol):
        if symbol not in self.prices:
            raise UpstreamError(self.name, "HTTP 404: Not Found")
        price = self.prices[symbol]
        return PriceTick(
            symbol=symbol, price=price, high_24h=price, low_24h=price,
            volume_24h=1.0, timestamp=1704110400000,
        )

    async def fetch_candles(self, symbol, interval, limit=100):
        if symbol not in self.candles:
            raise UpstreamError(self.name, "HTTP 404: Not Found")
        return self.candles[symbol][-limit:]

    async def fetch_order_book(self, symbol, depth=20):
        if symbol not in self.prices:
            raise UpstreamError(self.name, "HTTP 404: Not Found")
        return OrderBookSnapshot(
            symbol=symbol,
            bids=[OrderBookLevel(price=99.0, amount=1.0)],
            asks=[OrderBookLevel(price=101.0, amount=1.0)],
            timestamp=1704110400000,
        )


class GatedSource(FakeSource):
    """Holds every ticker request until the gate opens"""

    def __init__(self, prices=None, candles=None):
        super().__init__(prices, candles)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def fetch_ticker(self, symbol):
        self.entered.set()
        await self.gate.wait()
        return await super().fetch_ticker(symbol)


class CountingSource(FakeSource):
    """Tracks how many requests are outstanding at once"""

    def __init__(self, prices=None, candles=None):
        super().__init__(prices, candles)
        self.in_flight = 0
        self.peak = 0

    async def _tracked(self, call):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await call
        finally:
            self.in_flight -= 1

    async def fetch_ticker(self, symbol):
        return await self._tracked(super().fetch_ticker(symbol))

    async def fetch_candles(self, symbol, interval, limit=100):
        return await self._tracked(super().fetch_candles(symbol, interval, limit))


class ScriptedTickerSource(FakeSource):
    """Answers successive ticker requests from a script of (delay, price) pairs"""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.started = asyncio.Event()

    async def fetch_ticker(self, symbol):
        delay, price = self.script.pop(0)
        self.started.set()
        await asyncio.sleep(delay)
        return PriceTick(
            symbol=symbol, price=price, high_24h=price, low_24h=price,
            volume_24h=1.0, timestamp=1704110400000,
        )


class ScriptedSleep:
    """
    Records requested delays without waiting.

    After `passes` sleeps it blocks until cancelled, so a test can inspect
    the scheduler after a known number of loop iterations.
    """

    def __init__(self, passes=0):
        self.passes = passes
        self.delays = []
        self.reached = asyncio.Event()

    async def __call__(self, delay):
        self.delays.append(delay)
        if len(self.delays) > self.passes:
            self.reached.set()
            await asyncio.Event().wait()


def make_candle(ts):
    return Candle(timestamp=ts, open=1, high=1, low=1, close=1, volume=1)


def make_scheduler(source, sleep=None, symbols=SYMBOLS, **overrides):
    options = dict(refresh_interval=30, reconnect_delay=5, candle_retention=10, default_interval="1h")
    options.update(overrides)
    config = Settings(_env_file=None, **options)
    scheduler = RefreshScheduler(
        SourceRegistry([source]),
        FailoverFetcher(timeout=1.0),
        MarketCache(retention=10),
        symbols=symbols,
        sleep=sleep or ScriptedSleep(),
        config=config,
    )
    return scheduler


# ============================================
# Tests for connect()
# ============================================

class TestConnect:
    """Tests for connect()/disconnect()"""

    @pytest.mark.asyncio
    async def test_partial_load_connects(self):
        source = FakeSource(prices={"BTCUSDT": 65000.0, "ETHUSDT": 3500.0, "SOLUSDT": 150.0})
        scheduler = make_scheduler(source)

        await scheduler.connect()
        try:
            assert scheduler.state is ConnectionState.CONNECTED
            assert sorted(scheduler.cache.symbols("price")) == ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
            assert scheduler.cache.get("BNBUSDT", "price") is None
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_candles_alone_count_as_loaded(self):
        source = FakeSource(candles={"BTCUSDT": [make_candle(1), make_candle(2)]})
        scheduler = make_scheduler(source)

        await scheduler.connect()
        try:
            assert scheduler.state is ConnectionState.CONNECTED
            assert len(scheduler.cache.get("BTCUSDT", "candle", "1h")) == 2
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_nothing_loaded_raises(self):
        scheduler = make_scheduler(FakeSource())

        with pytest.raises(MarketConnectionError):
            await scheduler.connect()

        assert scheduler.state is ConnectionState.DISCONNECTED
        assert scheduler._task is None

    @pytest.mark.asyncio
    async def test_second_connect_ignored(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))

        await scheduler.connect()
        task = scheduler._task
        await scheduler.connect()
        try:
            assert scheduler._task is task
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_stops_loop_and_keeps_cache(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))
        await scheduler.connect()
        task = scheduler._task

        await scheduler.disconnect()

        assert scheduler.state is ConnectionState.DISCONNECTED
        assert task.done()
        assert scheduler.cache.get("BTCUSDT", "price").price == 1.0

    @pytest.mark.asyncio
    async def test_ticker_stream_disabled_by_default(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))

        await scheduler.connect()
        try:
            assert scheduler._stream_task is None
        finally:
            await scheduler.disconnect()


# ============================================
# Tests for the Periodic Loop
# ============================================

class TestRefreshLoop:
    """Tests for state transitions during refresh passes"""

    @pytest.mark.asyncio
    async def test_failed_passes_switch_to_reconnect_delay(self):
        source = FakeSource(prices={"BTCUSDT": 1.0})
        sleep = ScriptedSleep(passes=2)
        scheduler = make_scheduler(source, sleep=sleep)

        await scheduler.connect()
        source.prices.clear()
        try:
            await asyncio.wait_for(sleep.reached.wait(), timeout=1.0)

            assert sleep.delays == [30, 5, 5]
            assert scheduler.state is ConnectionState.CONNECTING
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_successful_pass_reconnects(self):
        source = FakeSource(prices={"BTCUSDT": 1.0})
        scheduler = make_scheduler(source)
        await scheduler.connect()
        try:
            source.prices.clear()
            assert await scheduler.refresh_prices() == 0
            assert scheduler.state is ConnectionState.CONNECTING

            source.prices["ETHUSDT"] = 2.0
            assert await scheduler.refresh_prices() == 1
            assert scheduler.state is ConnectionState.CONNECTED
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_pass_while_disconnected_keeps_state(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))

        assert await scheduler.refresh_prices() == 1
        assert scheduler.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_failed_symbol_keeps_last_good_value(self):
        source = FakeSource(prices={"BTCUSDT": 1.0, "ETHUSDT": 2.0})
        scheduler = make_scheduler(source)
        await scheduler.refresh_prices()

        del source.prices["ETHUSDT"]
        source.prices["BTCUSDT"] = 1.5
        await scheduler.refresh_prices()

        assert scheduler.cache.get("BTCUSDT", "price").price == 1.5
        assert scheduler.cache.get("ETHUSDT", "price").price == 2.0


# ============================================
# Tests for On-Demand Refreshes
# ============================================

class TestOnDemand:
    """Tests for refresh_candles()/refresh_order_book()"""

    @pytest.mark.asyncio
    async def test_refresh_candles_for_one_symbol(self):
        source = FakeSource(candles={"ETHUSDT": [make_candle(i) for i in range(20)]})
        scheduler = make_scheduler(source)

        assert await scheduler.refresh_candles("eth-usdt", interval="4h", limit=5) == 1

        cached = scheduler.cache.get("ETHUSDT", "candle", "4h")
        assert [c.timestamp for c in cached] == [15, 16, 17, 18, 19]

    @pytest.mark.asyncio
    async def test_refresh_order_book(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))

        book = await scheduler.refresh_order_book("BTCUSDT", depth=5)

        assert book.best_ask == 101.0
        assert scheduler.cache.get("BTCUSDT", "orderbook") is book

    @pytest.mark.asyncio
    async def test_refresh_order_book_failure_returns_none(self):
        scheduler = make_scheduler(FakeSource())

        assert await scheduler.refresh_order_book("BTCUSDT") is None


# ============================================
# Tests for disconnect() during connect()
# ============================================

class TestDisconnectWhileConnecting:
    """A disconnect() issued while the initial load is running wins"""

    @pytest.mark.asyncio
    async def test_pending_connect_does_not_start(self):
        source = GatedSource(prices={"BTCUSDT": 1.0})
        scheduler = make_scheduler(source, symbols=["BTCUSDT"])

        connecting = asyncio.create_task(scheduler.connect())
        await asyncio.wait_for(source.entered.wait(), timeout=1.0)
        assert scheduler.state is ConnectionState.CONNECTING

        await scheduler.disconnect()
        source.gate.set()
        await asyncio.wait_for(connecting, timeout=1.0)

        assert scheduler.state is ConnectionState.DISCONNECTED
        assert scheduler._task is None
        assert scheduler._stream_task is None

    @pytest.mark.asyncio
    async def test_reconnect_during_stale_load_starts_one_loop(self):
        source = GatedSource(prices={"BTCUSDT": 1.0})
        sleep = ScriptedSleep()
        scheduler = make_scheduler(source, sleep=sleep, symbols=["BTCUSDT"])

        first = asyncio.create_task(scheduler.connect())
        await asyncio.wait_for(source.entered.wait(), timeout=1.0)
        await scheduler.disconnect()
        second = asyncio.create_task(scheduler.connect())
        await asyncio.sleep(0)
        source.gate.set()
        await asyncio.wait_for(asyncio.gather(first, second), timeout=1.0)
        try:
            await asyncio.wait_for(sleep.reached.wait(), timeout=1.0)
            for _ in range(5):
                await asyncio.sleep(0)

            assert scheduler.state is ConnectionState.CONNECTED
            assert len(sleep.delays) == 1
        finally:
            await scheduler.disconnect()


# ============================================
# Tests for Concurrency and Write Ordering
# ============================================

class TestConcurrency:
    """Tests for the request cap and stale-write protection"""

    @pytest.mark.asyncio
    async def test_connect_respects_request_cap(self):
        source = CountingSource(
            prices={s: 1.0 for s in SYMBOLS},
            candles={s: [make_candle(1)] for s in SYMBOLS},
        )
        scheduler = make_scheduler(source, max_concurrent_requests=2)

        await scheduler.connect()
        try:
            assert source.peak == 2
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_refresh_prices_respects_request_cap(self):
        source = CountingSource(prices={s: 1.0 for s in SYMBOLS})
        scheduler = make_scheduler(source, max_concurrent_requests=3)

        assert await scheduler.refresh_prices() == len(SYMBOLS)
        assert source.peak == 3

    @pytest.mark.asyncio
    async def test_initial_load_fetches_price_and_candles_together(self):
        source = CountingSource(
            prices={s: 1.0 for s in SYMBOLS},
            candles={s: [make_candle(1)] for s in SYMBOLS},
        )
        scheduler = make_scheduler(source, max_concurrent_requests=2 * len(SYMBOLS))

        await scheduler.connect()
        try:
            assert source.peak == 2 * len(SYMBOLS)
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_slow_older_fetch_does_not_overwrite_newer_price(self):
        source = ScriptedTickerSource([(0.05, 100.0), (0.0, 200.0)])
        scheduler = make_scheduler(source, symbols=["BTCUSDT"])

        older = asyncio.create_task(scheduler.refresh_price("BTCUSDT"))
        await asyncio.wait_for(source.started.wait(), timeout=1.0)
        assert await scheduler.refresh_price("BTCUSDT") is True
        await older

        assert scheduler.cache.get("BTCUSDT", "price").price == 200.0

    def test_limiter_created_lazily(self):
        scheduler = make_scheduler(FakeSource(), sleep=asyncio.sleep, max_concurrent_requests=2)

        assert scheduler._semaphore is None

    @pytest.mark.asyncio
    async def test_limiter_reused_after_first_use(self):
        scheduler = make_scheduler(FakeSource(prices={"BTCUSDT": 1.0}))

        await scheduler.refresh_price("BTCUSDT")
        limiter = scheduler._semaphore

        assert limiter is not None
        assert scheduler._limiter() is limiter


# ============================================
# Tests for the Ticker Stream Task
# ============================================

class BinanceNamedSource(FakeSource):
    name = "binance"


class TestTickerStreamTask:
    """Failures of the optional ticker stream are logged, polling continues"""

    @pytest.mark.asyncio
    async def test_stream_failure_is_logged(self, caplog):
        scheduler = make_scheduler(
            BinanceNamedSource(prices={"BTCUSDT": 1.0}),
            symbols=["BTCUSDT"],
            enable_ws_ticker=True,
        )

        async def broken_stream():
            raise RuntimeError("socket gone")

        scheduler._stream_prices = broken_stream

        await scheduler.connect()
        try:
            await asyncio.gather(scheduler._stream_task, return_exceptions=True)
            await asyncio.sleep(0)

            assert "Ticker stream stopped: RuntimeError: socket gone" in caplog.text
            assert scheduler.state is ConnectionState.CONNECTED
            assert not scheduler._task.done()
        finally:
            await scheduler.disconnect()

    @pytest.mark.asyncio
    async def test_cancelled_stream_is_not_reported(self, caplog):
        scheduler = make_scheduler(FakeSource())

        async def forever():
            await asyncio.Event().wait()

        task = asyncio.create_task(forever())
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        scheduler._on_stream_done(task)

        assert "Ticker stream" not in caplog.text
