"""
FastAPI Application - Market Data Backend Proxy

Serves aggregated market data over HTTP so browsers never have to reach the
exchanges directly (no CORS relays, one place for failover).

REST Endpoints:
    - GET /api/market/kline      Candles with failover (or ?source= pinned)
    - GET /api/market/symbols    Supported pairs and candle sources
    - GET /api/market/health     Connection state and per-source health
    - GET /api/market/ticker     Latest 24h ticker for one symbol
    - GET /api/market/orderbook  Order book snapshot for one symbol
    - GET /api/market/compare    One symbol priced by every ticker source
    - GET /api/market/sources    Enabled flag, capabilities and ranks per source
    - POST /api/market/sources/{name}?enabled=  Enable or disable a source

WebSocket:
    - /ws/market/{kind}          Live cache updates (kind = price | candle | orderbook)
                                 optional ?symbols=BTCUSDT,ETHUSDT filter

All market data responses use the envelope
    {"success": bool, "data": ..., "source": "<adapter>" | "none", "message": str | null}

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8080

Docs:
    - Swagger: http://localhost:8080/docs
    - ReDoc: http://localhost:8080/redoc
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from core.config import VALID_INTERVALS, validate_configuration
from core.errors import AllSourcesFailedError
from core.logging import logger
from core.schemas import DataKind, ProxyResponse
from core.symbols import display_name, normalize
from core.utils.time import current_utc_timestamp, to_utc_datetime
from services.market_data import MarketDataService, build_market_data_service


def create_app(service: Optional[MarketDataService] = None) -> FastAPI:
    """
    Build the API around a MarketDataService.

    Args:
        service: Service to expose (defaults to build_market_data_service())
    """
    service = service or build_market_data_service()

    # ============================================
    # Lifespan Management
    # ============================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        logger.info("=== Application Starting ===")
        validate_configuration(service.config)
        if await service.connect():
            logger.info("=== Started Successfully ===")
        else:
            # Endpoints still fetch on demand; the scheduler can be retried with connect()
            logger.warning("=== Started without market connection ===")

        yield

        logger.info("=== Shutting Down ===")
        try:
            await service.close()
            logger.info("=== Shutdown Complete ===")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")

    app = FastAPI(
        title="Market Data Aggregator API",
        description=(
            "Aggregated cryptocurrency market data with multi-source failover.\n\n"
            "## REST Endpoints\n"
            "- `GET /api/market/kline` - Candlestick data\n"
            "- `GET /api/market/symbols` - Supported trading pairs\n"
            "- `GET /api/market/health` - Health check\n"
            "- `GET /api/market/ticker` - 24h ticker\n"
            "- `GET /api/market/orderbook` - Order book snapshot\n"
            "- `GET /api/market/compare` - Cross-source price comparison\n"
            "- `GET /api/market/sources` - Source status\n\n"
            "## WebSocket Streams\n"
            "- `ws://{host}/ws/market/{kind}` with kind = price | candle | orderbook\n"
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.state.market = service

    # ============================================
    # System Endpoints
    # ============================================

    @app.get("/", tags=["System"])
    async def root():
        """API information and configured sources."""
        return {
            "name": "Market Data Aggregator API",
            "version": "1.0.0",
            "docs": "/docs",
            "sources": service.registry.list_sources(),
        }

    @app.get("/api/market/health", tags=["System"])
    async def market_health():
        """Connection state plus a health check of every source."""
        health = await service.registry.health_check_all()
        now = current_utc_timestamp()
        return {
            "status": "ok" if any(health.values()) else "degraded",
            "timestamp": now,
            "time": to_utc_datetime(now).isoformat(),
            "connection": service.connection_state.value,
            "data_source": service.get_current_data_source(),
            "sources": health,
            "message": "Market data API is running",
        }

    @app.get("/api/market/symbols", tags=["Market Data"])
    async def supported_symbols():
        """Supported trading pairs and the sources that can serve their candles."""
        sources = [d.name for d in service.registry.descriptors(DataKind.CANDLE)]
        return {
            "success": True,
            "symbols": [
                {
                    "symbol": pair.symbol,
                    "name": display_name(pair.symbol),
                    "base_asset": pair.base_asset,
                    "quote_asset": pair.quote_asset,
                    "sources": sources,
                }
                for pair in service.get_trading_pairs()
            ],
        }

    # ============================================
    # Market Data Endpoints
    # ============================================

    @app.get("/api/market/kline", response_model=ProxyResponse, tags=["Market Data"])
    async def get_kline(
        symbol: str = Query(..., description="Trading pair in any spelling (BTCUSDT, BTC-USDT, BTC/USDT)"),
        interval: str = Query(default="1h", description="Candle interval (1m, 5m, 1h, 1d, ...)"),
        limit: int = Query(default=100, ge=1, le=1000, description="Number of candles"),
        source: Optional[str] = Query(default=None, description="Pin a single source (binance, okx, ...)")
    ):
        """
        Candles, oldest first. Without `source`, the configured candle sources
        are tried in priority order.
        """
        if interval not in VALID_INTERVALS:
            return ProxyResponse(success=False, data=[], message=f"Unsupported interval: {interval}")

        try:
            result = await service.fetch_candles(symbol, interval, limit, source=source)
        except (ValueError, AllSourcesFailedError) as e:
            return ProxyResponse(success=False, data=[], source=source or "none", message=str(e))

        data = [dict(candle.model_dump(), source=result.source) for candle in result.data]
        return ProxyResponse(success=True, data=data, source=result.source)

    @app.get("/api/market/ticker", response_model=ProxyResponse, tags=["Market Data"])
    async def get_ticker(symbol: str = Query(..., description="Trading pair")):
        """Latest ticker; served from cache while fresh."""
        tick = await service.get_ticker(symbol)
        if tick is None:
            return ProxyResponse(success=False, message=f"No ticker available for {normalize(symbol)}")
        return ProxyResponse(success=True, data=tick.model_dump(mode="json"), source=tick.source or "none")

    @app.get("/api/market/orderbook", response_model=ProxyResponse, tags=["Market Data"])
    async def get_order_book(
        symbol: str = Query(..., description="Trading pair"),
        depth: int = Query(default=20, ge=1, le=400, description="Levels per side")
    ):
        book = await service.fetch_order_book(symbol, limit=depth)
        if book is None:
            return ProxyResponse(success=False, message=f"No order book available for {normalize(symbol)}")
        return ProxyResponse(
            success=True,
            data=book.model_dump(mode="json"),
            source=book.source or "none",
        )

    @app.get("/api/market/compare", response_model=ProxyResponse, tags=["Market Data"])
    async def compare_prices(symbol: str = Query(..., description="Trading pair")):
        """
        Ask every enabled ticker source at once and report how far they disagree.

        Example response data:
            {"symbol": "BTCUSDT", "price": 65000.0, "source": "binance",
             "confidence": 99.2, "max_deviation_percent": 0.08, "quotes": [...]}
        """
        try:
            aggregated = await service.aggregate_price(symbol)
        except AllSourcesFailedError as e:
            return ProxyResponse(success=False, message=str(e))
        return ProxyResponse(success=True, data=aggregated.model_dump(mode="json"), source=aggregated.source)

    # ============================================
    # Source Management Endpoints
    # ============================================

    @app.get("/api/market/sources", tags=["Sources"])
    async def list_sources():
        """Every registered source with its enabled flag, capabilities and rank per data kind."""
        return {
            "success": True,
            "sources": [status.model_dump() for status in service.get_source_status()],
        }

    @app.post("/api/market/sources/{name}", tags=["Sources"])
    async def set_source_enabled(
        name: str,
        enabled: bool = Query(..., description="true to enable, false to disable")
    ):
        """Take a source out of (or back into) every failover list."""
        try:
            status = service.set_source_enabled(name, enabled)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"success": True, "source": status.model_dump()}

    # ============================================
    # WebSocket Streams
    # ============================================

    @app.websocket("/ws/market/{kind}")
    async def market_stream(
        websocket: WebSocket,
        kind: str,
        symbols: Optional[str] = Query(default=None, description="Comma-separated symbol filter")
    ):
        """
        Push every cache update of one kind as JSON.

        Example:
            ws://localhost:8080/ws/market/price?symbols=BTCUSDT,ETHUSDT
        """
        await websocket.accept()

        try:
            data_kind = DataKind(kind)
        except ValueError:
            await websocket.close(code=1008, reason=f"Invalid stream: {kind}")
            return

        wanted = {normalize(s) for s in symbols.split(",") if s.strip()} if symbols else None
        logger.info(f"WS connected: market/{data_kind.value}")

        with service.hub.queue_subscription(data_kind) as queue:
            try:
                while True:
                    update = await queue.get()
                    if wanted is not None and update.symbol not in wanted:
                        continue
                    await websocket.send_json(update.model_dump(mode="json"))
            except WebSocketDisconnect:
                logger.info(f"WS disconnected: market/{data_kind.value}")
            except Exception as e:
                logger.error(f"WS error market/{data_kind.value}: {e}")
                try:
                    await websocket.close(code=1011, reason="Internal error")
                except RuntimeError:
                    pass

    return app


app = create_app()
