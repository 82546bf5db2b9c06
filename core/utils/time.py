"""
Time Utilities

Providers disagree on timestamp encoding:
- Binance klines: integer milliseconds
- OKX candles: milliseconds as strings
- CoinGecko market_chart: milliseconds as JSON numbers (sometimes floats)

The canonical model stores epoch milliseconds as int. These helpers normalize
whatever a provider sends and supply the "now" used for fetch completion times.
"""

import time
from datetime import datetime, timezone
from typing import Union


def to_milliseconds(timestamp: Union[int, float, str]) -> int:
    """
    Convert a timestamp in seconds or milliseconds to epoch milliseconds.

    Detection Logic:
        - If timestamp > 1e12: assumed to be milliseconds already
        - Otherwise: assumed to be seconds

    Raises:
        ValueError: If the value is negative or not numeric

    Examples:
        >>> to_milliseconds(1704110400)
        1704110400000
        >>> to_milliseconds("1704110400000")
        1704110400000
    """
    try:
        value = float(timestamp)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timestamp: {timestamp!r}")

    if value < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    # 1e12 ms is Sept 2001, 1e12 s is year 33658
    if value > 1e12:
        return int(value)
    return int(value * 1000)


def current_utc_timestamp(milliseconds: bool = True) -> int:
    """
    Current UTC time as epoch seconds or milliseconds.

    Examples:
        >>> current_utc_timestamp() > 1_700_000_000_000
        True
    """
    now = time.time()
    return int(now * 1000) if milliseconds else int(now)


def to_utc_datetime(timestamp_ms: int) -> datetime:
    """Epoch milliseconds to a timezone-aware UTC datetime (for display/logging)."""
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


_INTERVAL_UNITS_MS = {
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}


def interval_to_milliseconds(interval: str) -> int:
    """
    Length of a candle interval in milliseconds.

    Raises:
        ValueError: If the interval is not <number><m|h|d|w>

    Examples:
        >>> interval_to_milliseconds("4h")
        14400000
    """
    unit = interval[-1:]
    amount = interval[:-1]
    if unit not in _INTERVAL_UNITS_MS or not amount.isdigit() or int(amount) == 0:
        raise ValueError(f"Invalid interval: {interval!r}")
    return int(amount) * _INTERVAL_UNITS_MS[unit]
