"""
Engine Logging

One "market_aggregator" logger tree for the whole engine. Components log
through get_logger(__name__) so every line carries the module it came from,
e.g. "market_aggregator.services.failover".

What each level is used for:
    DEBUG    upstream request/response lines, per-pass refresh counts
    INFO     connection state changes, source priority or enablement changes
    WARNING  one source failed and the next is tried, sources disagree on price
    ERROR    every source failed a fetch, a subscriber callback raised

The level comes from LOG_LEVEL (see core.config).
"""

import logging
import sys
from typing import Optional


APP_LOGGER_NAME = "market_aggregator"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_level: str = "INFO", log_format: Optional[str] = None) -> logging.Logger:
    """
    Route all logging to stdout and return the engine's root logger.

    Example:
        >>> setup_logging("DEBUG").info("Engine started")
        2024-01-01 12:00:00 [INFO] market_aggregator: Engine started
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=log_format or DEFAULT_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    return app_logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level
except ImportError:
    # core.config is only partially initialised when it imports us first
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


# ============================================
# Upstream Traffic Helpers
# ============================================

def log_api_request(source: str, url: str, params: dict = None) -> None:
    suffix = f" | Params: {params}" if params else ""
    logger.debug(f"API Request: {source} {url}{suffix}")


def log_api_response(source: str, url: str, status: int, response_time: float = None) -> None:
    """
    Example:
        >>> log_api_response("okx", "/api/v5/market/books", 200, 0.342)
        [DEBUG] API Response: okx /api/v5/market/books | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {source} {url} | Status: {status}{time_str}")


def log_websocket_event(source: str, event: str, symbol: str = None, details: str = None) -> None:
    """Stream lifecycle events; "error" is logged at ERROR, everything else at INFO."""
    symbol_str = f" | Symbol: {symbol}" if symbol else ""
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event == "error" else logging.INFO
    logger.log(level, f"WebSocket: {source} {event}{symbol_str}{details_str}")
