"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates tracked symbols, intervals and source priority lists
- Provides type-safe access to configuration values
- Converts comma-separated strings to lists (symbols, source orders, relays)
- Handles optional settings with sensible defaults

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.binance_base_url)
    print(settings.symbols_list)  # Returns a list of canonical symbols
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


KNOWN_SOURCES = ("binance", "okx", "coingecko", "backend_proxy")
VALID_INTERVALS = ("1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "12h", "1d", "1w")


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the market data engine.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        supported_symbols: Tracked trading pairs (canonical form, e.g. "BTCUSDT")
        price_sources: Failover order for ticker data
        candle_sources: Failover order for candle data
        orderbook_sources: Failover order for order book data
        fetch_timeout: Per-attempt timeout in seconds
        refresh_interval: Seconds between periodic price refresh passes
        reconnect_delay: Seconds between refresh attempts after connectivity loss
        max_concurrent_requests: Cap on simultaneous upstream requests
        candle_retention: Candles kept per (symbol, interval)
        default_interval: Interval used for the initial candle history
        order_book_depth: Default order book depth for on-demand fetches
        max_price_deviation: Cross-source deviation (percent) worth a warning
        quote_freshness: Seconds before a compared quote starts losing quality
        okx_relays: Comma-separated CORS relay prefixes tried in order for OKX
    """

    # ============================================
    # Upstream Provider Configuration
    # ============================================

    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Binance spot REST API base URL"
    )

    binance_ws_url: str = Field(
        default="wss://stream.binance.com:9443/stream",
        description="Binance combined-stream WebSocket URL"
    )

    okx_base_url: str = Field(
        default="https://www.okx.com",
        description="OKX REST API base URL"
    )

    okx_relays: str = Field(
        default="",
        description="Comma-separated CORS relay prefixes for OKX (empty = direct)"
    )

    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko REST API base URL"
    )

    backend_proxy_url: str = Field(
        default="http://localhost:8080/api/market",
        description="Base URL of an upstream backend proxy exposing /kline, /symbols, /health"
    )

    # ============================================
    # Source Priority Configuration
    # ============================================

    price_sources: str = Field(
        default="binance,okx,coingecko",
        description="Comma-separated ticker source order (highest priority first)"
    )

    candle_sources: str = Field(
        default="okx,binance,coingecko",
        description="Comma-separated candle source order (highest priority first)"
    )

    orderbook_sources: str = Field(
        default="binance,okx",
        description="Comma-separated order book source order (highest priority first)"
    )

    # ============================================
    # Supported Markets Configuration
    # ============================================

    supported_symbols: str = Field(
        default="BTCUSDT,ETHUSDT,BNBUSDT,ADAUSDT,SOLUSDT,XRPUSDT,DOTUSDT,DOGEUSDT,AVAXUSDT,LINKUSDT",
        description="Comma-separated list of tracked trading pairs"
    )

    default_interval: str = Field(
        default="1h",
        description="Candle interval used for the initial history fetch"
    )

    # ============================================
    # Refresh & Failover Tuning
    # ============================================

    fetch_timeout: float = Field(
        default=5.0,
        description="Per-attempt upstream timeout in seconds"
    )

    refresh_interval: float = Field(
        default=30.0,
        description="Seconds between periodic price refresh passes"
    )

    reconnect_delay: float = Field(
        default=30.0,
        description="Seconds between refresh attempts while reconnecting"
    )

    max_concurrent_requests: int = Field(
        default=4,
        description="Maximum simultaneous outstanding upstream requests"
    )

    candle_retention: int = Field(
        default=100,
        description="Most recent candles kept per symbol and interval"
    )

    order_book_depth: int = Field(
        default=20,
        description="Default order book depth"
    )

    max_price_deviation: float = Field(
        default=0.5,
        description="Cross-source price deviation (percent) above which a comparison is logged as a warning"
    )

    quote_freshness: float = Field(
        default=60.0,
        description="Seconds a quote stays fully trusted in cross-source comparisons"
    )

    enable_ws_ticker: bool = Field(
        default=False,
        description="Also consume Binance push ticker updates over WebSocket"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8080,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # List Properties
    # ============================================

    @property
    def symbols_list(self) -> List[str]:
        """
        Tracked symbols as a list.

        Example:
            >>> settings.symbols_list[:2]
            ['BTCUSDT', 'ETHUSDT']
        """
        return _split(self.supported_symbols, upper=True)

    @property
    def price_sources_list(self) -> List[str]:
        return _split(self.price_sources)

    @property
    def candle_sources_list(self) -> List[str]:
        return _split(self.candle_sources)

    @property
    def orderbook_sources_list(self) -> List[str]:
        return _split(self.orderbook_sources)

    @property
    def okx_relays_list(self) -> List[str]:
        return [r.strip() for r in self.okx_relays.split(",") if r.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def source_order(self, kind: str) -> List[str]:
        """
        Source priority list for a data kind ("price", "candle", "orderbook").

        Raises:
            ValueError: If the kind is unknown
        """
        orders = {
            "price": self.price_sources_list,
            "candle": self.candle_sources_list,
            "orderbook": self.orderbook_sources_list,
        }
        if kind not in orders:
            raise ValueError(f"Unknown data kind: '{kind}'")
        return orders[kind]


def _split(raw: str, upper: bool = False) -> List[str]:
    items = [s.strip() for s in raw.split(",") if s.strip()]
    return [s.upper() for s in items] if upper else [s.lower() for s in items]


# ============================================
# Global Settings Instance
# ============================================

# Loaded once and reused; services also accept an explicit Settings instance
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global instance)

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if not config.symbols_list:
        raise ValueError("SUPPORTED_SYMBOLS must contain at least one symbol")

    if config.default_interval not in VALID_INTERVALS:
        raise ValueError(
            f"Invalid DEFAULT_INTERVAL: '{config.default_interval}'. "
            f"Must be one of: {', '.join(VALID_INTERVALS)}"
        )

    for kind in ("price", "candle", "orderbook"):
        order = config.source_order(kind)
        if not order:
            raise ValueError(f"No sources configured for '{kind}' data")
        for name in order:
            if name not in KNOWN_SOURCES:
                raise ValueError(
                    f"Unknown source '{name}' in {kind} source order. "
                    f"Must be one of: {', '.join(KNOWN_SOURCES)}"
                )

    if config.fetch_timeout <= 0:
        raise ValueError(f"FETCH_TIMEOUT must be positive, got {config.fetch_timeout}")

    if config.refresh_interval <= 0 or config.reconnect_delay <= 0:
        raise ValueError("REFRESH_INTERVAL and RECONNECT_DELAY must be positive")

    if config.max_concurrent_requests < 1:
        raise ValueError("MAX_CONCURRENT_REQUESTS must be at least 1")

    if config.candle_retention < 1:
        raise ValueError("CANDLE_RETENTION must be at least 1")

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"Tracking symbols: {', '.join(config.symbols_list)}")
    logger.info(f"Price sources: {' > '.join(config.price_sources_list)}")
    logger.info(f"Candle sources: {' > '.join(config.candle_sources_list)}")
    logger.info(f"Order book sources: {' > '.join(config.orderbook_sources_list)}")
    logger.info(f"Refresh every {config.refresh_interval:.0f}s, timeout {config.fetch_timeout:.1f}s per attempt")
