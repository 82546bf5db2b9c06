"""
Core Utilities Package

Modules:
    - time: Timestamp unit normalization, interval lengths and "now" helpers
"""

from core.utils.time import (
    current_utc_timestamp,
    interval_to_milliseconds,
    to_milliseconds,
    to_utc_datetime,
)

__all__ = [
    "current_utc_timestamp",
    "interval_to_milliseconds",
    "to_milliseconds",
    "to_utc_datetime",
]
