"""
Unit Tests for MarketDataService

These tests verify the consumer API:
- connect() returns False instead of raising when nothing loads
- Price data comes back in tracked symbol order
- Subscribers receive cache updates
- Historical candles fall back to the cache when every source fails
- Pinned sources bypass the priority list
- Every enabled source can be compared at once, and sources can be disabled or reordered at runtime

Run with:
    pytest tests/unit/test_market_data_service.py -v
"""

import asyncio

import pytest
import pytest_asyncio

from core.config import Settings
from core.errors import AllSourcesFailedError, UpstreamError
from core.schemas import Candle, CandleUpdate, OrderBookLevel, OrderBookSnapshot, PriceTick
from core.source_adapter import SourceAdapter
from core.source_registry import SourceRegistry
from services.market_data import MarketDataService, build_market_data_service


# ============================================
# Fakes
# ============================================

class FakeSource(SourceAdapter):
    """Scripted source; `up` toggles every operation at once"""

    def __init__(self, name, prices=None, candles=None, orderbook=True):
        self.name = name
        self.capabilities = {"ticker": True, "candles": True, "orderbook": orderbook}
        self.prices = dict(prices or {})
        self.candles = list(candles or [])
        self.up = True
        self.initialized = 0
        self.shut_down = 0

    async def initialize(self):
        self.initialized += 1

    async def shutdown(self):
        self.shut_down += 1

    def _check(self, symbol=None):
        if not self.up or (symbol is not None and symbol not in self.prices):
            raise UpstreamError(self.name, "HTTP 503: Service Unavailable")

    async def fetch_ticker(self, symbol):
        self._check(symbol)
        price = self.prices[symbol]
        return PriceTick(
            symbol=symbol, price=price, high_24h=price, low_24h=price,
            volume_24h=1.0, timestamp=1704110400000,
        )

    async def fetch_candles(self, symbol, interval, limit=100):
        self._check()
        return self.candles[-limit:]

    async def fetch_order_book(self, symbol, depth=20):
        self._check(symbol)
        return OrderBookSnapshot(
            symbol=symbol,
            bids=[OrderBookLevel(price=99.0, amount=1.0)],
            asks=[OrderBookLevel(price=101.0, amount=1.0)],
            timestamp=1704110400000,
        )


async def never_wake(delay):
    await asyncio.Event().wait()


def make_candles(n):
    return [Candle(timestamp=i, open=1, high=1, low=1, close=float(i), volume=1) for i in range(n)]


def make_config(**overrides):
    values = dict(_env_file=None, supported_symbols="ETHUSDT,BTCUSDT,SOLUSDT", candle_retention=50)
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def primary():
    return FakeSource("primary", prices={"BTCUSDT": 65000.0, "ETHUSDT": 3500.0}, candles=make_candles(30))


@pytest_asyncio.fixture
async def service(primary):
    svc = MarketDataService(
        config=make_config(),
        registry=SourceRegistry([primary]),
        sleep=never_wake,
    )
    yield svc
    await svc.close()


# ============================================
# Tests for Connection
# ============================================

class TestConnection:
    """Tests for connect()/close()"""

    @pytest.mark.asyncio
    async def test_connect_loads_data(self, service, primary):
        assert await service.connect() is True

        assert service.is_connected_to_market()
        assert service.connection_state.value == "connected"
        assert service.get_current_data_source() == "primary"
        assert primary.initialized == 1

    @pytest.mark.asyncio
    async def test_connect_returns_false_when_nothing_loads(self, service, primary):
        primary.up = False

        assert await service.connect() is False
        assert not service.is_connected_to_market()

    @pytest.mark.asyncio
    async def test_sources_initialized_once(self, service, primary):
        await service.connect()
        await service.disconnect()
        await service.connect()

        assert primary.initialized == 1

    @pytest.mark.asyncio
    async def test_close_shuts_down_sources(self, service, primary):
        await service.connect()
        await service.close()

        assert primary.shut_down == 1
        assert service.connection_state.value == "disconnected"


# ============================================
# Tests for Reads
# ============================================

class TestReads:
    """Tests for cached reads"""

    @pytest.mark.asyncio
    async def test_price_data_in_tracked_order(self, service):
        await service.connect()

        symbols = [tick.symbol for tick in service.get_price_data()]

        assert symbols == ["ETHUSDT", "BTCUSDT"]

    def test_trading_pairs(self, service):
        pairs = service.get_trading_pairs()

        assert [p.symbol for p in pairs] == ["ETHUSDT", "BTCUSDT", "SOLUSDT"]
        assert (pairs[0].base_asset, pairs[0].quote_asset) == ("ETH", "USDT")

    @pytest.mark.asyncio
    async def test_get_ticker_fetches_when_missing(self, service):
        tick = await service.get_ticker("btc-usdt")

        assert tick.price == 65000.0
        assert tick.source == "primary"

    @pytest.mark.asyncio
    async def test_get_ticker_serves_stale_value_when_sources_fail(self, service, primary):
        await service.get_ticker("BTCUSDT")
        primary.up = False
        service.cache.clock = lambda: 10 ** 15

        tick = await service.get_ticker("BTCUSDT")

        assert tick.price == 65000.0


# ============================================
# Tests for Subscriptions
# ============================================

class TestSubscriptions:
    """Tests for subscribe()/unsubscribe()"""

    @pytest.mark.asyncio
    async def test_subscribers_receive_updates(self, service):
        prices, candles = [], []
        service.subscribe("price", prices.append)
        service.subscribe("candle", candles.append)

        await service.connect()

        assert {tick.symbol for tick in prices} == {"BTCUSDT", "ETHUSDT"}
        assert all(isinstance(update, CandleUpdate) for update in candles)

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_updates(self, service):
        prices = []
        service.subscribe("price", prices.append)
        service.unsubscribe("price", prices.append)

        await service.get_ticker("BTCUSDT")

        assert prices == []


# ============================================
# Tests for On-Demand Fetches
# ============================================

class TestOnDemand:
    """Tests for candles and order books"""

    @pytest.mark.asyncio
    async def test_historical_candles(self, service):
        candles = await service.generate_historical_candles("BTCUSDT", "1h", limit=10)

        assert [c.close for c in candles] == [float(i) for i in range(20, 30)]

    @pytest.mark.asyncio
    async def test_historical_candles_fall_back_to_cache(self, service, primary):
        await service.generate_historical_candles("BTCUSDT", "1h", limit=30)
        primary.up = False

        candles = await service.generate_historical_candles("BTCUSDT", "1h", limit=5)

        assert [c.close for c in candles] == [25.0, 26.0, 27.0, 28.0, 29.0]

    @pytest.mark.asyncio
    async def test_historical_candles_empty_without_cache(self, service, primary):
        primary.up = False

        assert await service.generate_historical_candles("BTCUSDT", "1h") == []

    @pytest.mark.asyncio
    async def test_pinned_source(self, primary):
        backup = FakeSource("backup", candles=make_candles(3))
        svc = MarketDataService(
            config=make_config(),
            registry=SourceRegistry([primary, backup]),
            sleep=never_wake,
        )

        result = await svc.fetch_candles("BTCUSDT", "1h", limit=10, source="backup")

        assert result.source == "backup"
        assert len(result.data) == 3

    @pytest.mark.asyncio
    async def test_pinned_source_failure_is_not_failed_over(self, primary):
        backup = FakeSource("backup", candles=make_candles(3))
        backup.up = False
        svc = MarketDataService(
            config=make_config(),
            registry=SourceRegistry([primary, backup]),
            sleep=never_wake,
        )

        with pytest.raises(AllSourcesFailedError) as exc_info:
            await svc.fetch_candles("BTCUSDT", "1h", source="backup")

        assert exc_info.value.sources == ["backup"]

    @pytest.mark.asyncio
    async def test_unknown_pinned_source(self, service):
        with pytest.raises(ValueError, match="not registered"):
            await service.fetch_candles("BTCUSDT", source="kraken")

    @pytest.mark.asyncio
    async def test_order_book(self, service, primary):
        book = await service.fetch_order_book("BTCUSDT", limit=5)

        assert book.spread == 2.0
        assert service.get_cached_order_book("BTCUSDT") is book

        primary.up = False
        assert await service.fetch_order_book("BTCUSDT") is None


class TestSourceManagement:
    """Tests for cross-source comparison and runtime source control"""

    @pytest_asyncio.fixture
    async def two_source_service(self, primary):
        backup = FakeSource("backup", prices={"BTCUSDT": 65650.0}, orderbook=False)
        svc = MarketDataService(
            config=make_config(),
            registry=SourceRegistry([primary, backup]),
            sleep=never_wake,
        )
        yield svc, backup
        await svc.close()

    @pytest.mark.asyncio
    async def test_aggregate_price_quotes_every_source(self, two_source_service):
        svc, _ = two_source_service

        result = await svc.aggregate_price("btc/usdt")

        assert result.symbol == "BTCUSDT"
        assert result.source == "primary"
        assert [q.source for q in result.quotes] == ["primary", "backup"]
        assert result.max_deviation_percent == pytest.approx(1.0)
        assert result.confidence == pytest.approx(90.0)
        assert svc.cache.get("BTCUSDT", "price") is None

    @pytest.mark.asyncio
    async def test_aggregate_price_skips_disabled_source(self, two_source_service):
        svc, _ = two_source_service

        svc.set_source_enabled("primary", False)
        result = await svc.aggregate_price("BTCUSDT")

        assert result.source == "backup"
        assert [q.source for q in result.quotes] == ["backup"]

    @pytest.mark.asyncio
    async def test_aggregate_price_raises_when_all_fail(self, two_source_service, primary):
        svc, backup = two_source_service
        primary.up = False
        backup.up = False

        with pytest.raises(AllSourcesFailedError) as exc_info:
            await svc.aggregate_price("BTCUSDT")

        assert exc_info.value.sources == ["primary", "backup"]

    @pytest.mark.asyncio
    async def test_disabled_source_is_not_used_for_failover(self, two_source_service, primary):
        svc, _ = two_source_service

        status = svc.set_source_enabled("PRIMARY", False)
        tick = await svc.get_ticker("BTCUSDT")

        assert status.name == "primary"
        assert status.enabled is False
        assert tick.source == "backup"

    def test_source_status(self, service):
        statuses = service.get_source_status()

        assert [s.name for s in statuses] == ["primary"]
        assert statuses[0].enabled is True
        assert statuses[0].ranks == {"price": 0, "candle": 0, "orderbook": 0}

    def test_set_source_enabled_unknown_name(self, service):
        with pytest.raises(ValueError, match="not registered"):
            service.set_source_enabled("kraken", False)

    @pytest.mark.asyncio
    async def test_set_source_priority(self, two_source_service):
        svc, _ = two_source_service

        svc.set_source_priority("price", ["backup", "primary"])
        tick = await svc.get_ticker("BTCUSDT")

        assert tick.source == "backup"
        assert svc.get_current_data_source() == "backup"


class TestFactory:
    """Tests for build_market_data_service()"""

    def test_default_stack_wired_to_one_hub(self):
        config = make_config(price_sources="okx,binance", candle_sources="okx", orderbook_sources="binance")

        svc = build_market_data_service(config)

        assert svc.cache.hub is svc.hub
        assert svc.registry.list_sources() == ["okx", "binance"]
        assert svc.scheduler.symbols == ["ETHUSDT", "BTCUSDT", "SOLUSDT"]
