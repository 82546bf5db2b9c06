"""
Unit Tests for the Backend Proxy Source

These tests verify that:
- /kline ProxyResponses are parsed into candles
- success=false and empty data become UpstreamError
- Tickers are derived from the two most recent 1m candles
- Health and symbols helpers read the other endpoints

Run with:
    pytest tests/unit/test_backend_proxy.py -v
"""

import pytest

from core.errors import UpstreamError
from core.schemas import Candle
from exchanges.backend_proxy import BackendProxySource
from exchanges.backend_proxy.api_client import parse_kline_response, tick_from_candles


def candle_row(ts, close, high=None, low=None, volume=1.0):
    return {
        "timestamp": ts,
        "open": close,
        "high": high or close,
        "low": low or close,
        "close": close,
        "volume": volume,
        "source": "okx",
    }


class TestParseKline:
    """Tests for parse_kline_response()"""

    def test_success_response(self):
        payload = {"success": True, "data": [candle_row(2, 11.0), candle_row(1, 10.0)], "source": "okx"}

        candles = parse_kline_response(payload)

        assert [c.timestamp for c in candles] == [1, 2]

    def test_failure_response_carries_message(self):
        payload = {"success": False, "data": [], "source": "none", "message": "All sources failed"}

        with pytest.raises(UpstreamError, match="All sources failed"):
            parse_kline_response(payload)

    def test_empty_data_raises(self):
        with pytest.raises(UpstreamError, match="empty kline result"):
            parse_kline_response({"success": True, "data": []})

    def test_malformed_payload_raises(self):
        with pytest.raises(UpstreamError, match="malformed kline"):
            parse_kline_response({"unexpected": True})


class TestDerivedTicker:
    """Tests for tick_from_candles()"""

    def test_change_against_previous_close(self):
        candles = [
            Candle(timestamp=1, open=100, high=101, low=99, close=100, volume=2),
            Candle(timestamp=2, open=100, high=103, low=98, close=102, volume=3),
        ]

        tick = tick_from_candles(candles, "BTCUSDT")

        assert tick.price == 102.0
        assert tick.price_change == 2.0
        assert tick.price_change_percent == 2.0
        assert tick.high_24h == 103.0
        assert tick.low_24h == 98.0
        assert tick.volume_24h == 5.0
        assert tick.source == "backend_proxy"

    def test_needs_two_candles(self):
        with pytest.raises(UpstreamError, match="need 2 candles"):
            tick_from_candles([Candle(timestamp=1, open=1, high=1, low=1, close=1)], "BTCUSDT")


class TestBackendProxySource:
    """Tests for BackendProxySource"""

    @pytest.mark.asyncio
    async def test_fetch_ticker_requests_two_1m_candles(self, monkeypatch):
        source = BackendProxySource(base_url="http://proxy.example/api/market")
        calls = []

        async def mock_get(path, params=None):
            calls.append((path, params))
            return {"success": True, "data": [candle_row(1, 100.0), candle_row(2, 101.0)]}

        monkeypatch.setattr(source.client, "_get", mock_get)

        tick = await source.fetch_ticker("BTCUSDT")

        assert calls == [("/kline", {"symbol": "BTCUSDT", "interval": "1m", "limit": 2})]
        assert tick.price == 101.0

    @pytest.mark.asyncio
    async def test_health_and_symbols(self, monkeypatch):
        source = BackendProxySource()

        async def mock_get(path, params=None):
            if path == "/health":
                return {"status": "ok"}
            return {"success": True, "symbols": [{"symbol": "BTCUSDT"}]}

        monkeypatch.setattr(source.client, "_get", mock_get)

        assert await source.health_check() is True
        assert await source.health() == {"status": "ok"}
        assert await source.symbols() == [{"symbol": "BTCUSDT"}]

    @pytest.mark.asyncio
    async def test_health_check_false_when_unreachable(self, monkeypatch):
        source = BackendProxySource()

        async def mock_get(path, params=None):
            raise UpstreamError("backend_proxy", "request failed: connection refused")

        monkeypatch.setattr(source.client, "_get", mock_get)

        assert await source.health_check() is False

    def test_no_order_book(self):
        assert not BackendProxySource().supports("orderbook")
