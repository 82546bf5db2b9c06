"""
Market Cache & Staleness Tracker

In-memory store of the latest market data per (symbol, kind), plus candle
series per (symbol, interval). Every entry remembers when it was written so
readers can ask whether it is stale.

Write rules:
    - price / orderbook: the new value replaces the old one
    - candle: series are merged by candle open time (a candle with the same
      timestamp replaces the cached one), kept oldest first and trimmed to the
      most recent `retention` candles
    - versioned writes: callers take a token with next_version() before a
      fetch and pass it to put(); a token older than the last applied one is
      discarded, so a slow response can never overwrite newer data

Staleness is lazy: nothing is evicted on a timer, is_stale() compares the
write time with the clock on demand.

Every applied write is published to the SubscriptionHub (when one is set):
    price     -> PriceTick
    candle    -> CandleUpdate (newest candle of the series)
    orderbook -> OrderBookSnapshot
"""

from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, NamedTuple, Optional, Tuple, Union

from core.config import settings
from core.logging import get_logger
from core.schemas import Candle, CandleUpdate, DataKind, OrderBookSnapshot, PriceTick
from core.symbols import normalize
from core.utils.time import current_utc_timestamp


SlotKey = Tuple[str, DataKind, Optional[str]]


class CacheEntry(NamedTuple):
    data: Any
    written_at: int
    version: Optional[int]


class MarketCache:
    """
    Latest-value cache with candle series retention and version guards.

    Args:
        retention: Candles kept per (symbol, interval)
        clock: Returns "now" in epoch ms (injectable for tests)
        hub: SubscriptionHub notified on every applied write
        default_interval: Interval used when a candle call omits one

    Example:
        >>> cache = MarketCache(retention=100)
        >>> token = cache.next_version("BTCUSDT", "price")
        >>> cache.put("BTCUSDT", "price", tick, version=token)
        True
        >>> cache.is_stale("BTCUSDT", "price", max_age_ms=60_000)
        False
    """

    def __init__(
        self,
        retention: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
        hub=None,
        default_interval: Optional[str] = None
    ):
        self.retention = retention if retention is not None else settings.candle_retention
        if self.retention < 1:
            raise ValueError(f"retention must be at least 1, got {self.retention}")

        self.clock = clock or current_utc_timestamp
        self.hub = hub
        self.default_interval = default_interval or settings.default_interval

        self._entries: Dict[SlotKey, CacheEntry] = {}
        self._issued: DefaultDict[SlotKey, int] = defaultdict(int)
        self._logger = get_logger(__name__)

    def _key(self, symbol: str, kind: Union[DataKind, str], interval: Optional[str]) -> SlotKey:
        kind = DataKind(kind)
        if kind is DataKind.CANDLE:
            return normalize(symbol), kind, interval or self.default_interval
        return normalize(symbol), kind, None

    # ============================================
    # Reads
    # ============================================

    def get(self, symbol: str, kind: Union[DataKind, str], interval: Optional[str] = None) -> Any:
        """
        Latest value for a slot, or None if nothing was written.

        Candle series are returned as a new list, so callers cannot mutate
        the cached series.
        """
        entry = self._entries.get(self._key(symbol, kind, interval))
        if entry is None:
            return None
        if isinstance(entry.data, list):
            return list(entry.data)
        return entry.data

    def written_at(self, symbol: str, kind: Union[DataKind, str], interval: Optional[str] = None) -> Optional[int]:
        entry = self._entries.get(self._key(symbol, kind, interval))
        return entry.written_at if entry else None

    def is_stale(
        self,
        symbol: str,
        kind: Union[DataKind, str],
        max_age_ms: int,
        interval: Optional[str] = None
    ) -> bool:
        """True if the slot is empty or was written more than max_age_ms ago."""
        written = self.written_at(symbol, kind, interval)
        if written is None:
            return True
        return self.clock() - written > max_age_ms

    def symbols(self, kind: Union[DataKind, str]) -> List[str]:
        kind = DataKind(kind)
        seen: List[str] = []
        for symbol, entry_kind, _ in self._entries:
            if entry_kind is kind and symbol not in seen:
                seen.append(symbol)
        return seen

    def values(self, kind: Union[DataKind, str]) -> List[Any]:
        """All cached values of one kind, in first-write order."""
        kind = DataKind(kind)
        return [
            list(entry.data) if isinstance(entry.data, list) else entry.data
            for (_, entry_kind, _), entry in self._entries.items()
            if entry_kind is kind
        ]

    def __len__(self) -> int:
        return len(self._entries)

    # ============================================
    # Writes
    # ============================================

    def next_version(self, symbol: str, kind: Union[DataKind, str], interval: Optional[str] = None) -> int:
        """Issue a fetch token for a slot; tokens increase monotonically per slot."""
        key = self._key(symbol, kind, interval)
        self._issued[key] += 1
        return self._issued[key]

    def put(
        self,
        symbol: str,
        kind: Union[DataKind, str],
        data: Any,
        interval: Optional[str] = None,
        version: Optional[int] = None
    ) -> bool:
        """
        Write a value (or merge a candle series) into the cache.

        Returns:
            True if the write was applied, False if it was discarded (older
            version token, or an empty candle list)

        Raises:
            TypeError: If data does not match the kind
        """
        key = self._key(symbol, kind, interval)
        symbol, kind, interval = key
        _check_type(kind, data)

        existing = self._entries.get(key)
        if version is not None and existing is not None and existing.version is not None:
            if version < existing.version:
                self._logger.debug(
                    f"Discarding outdated {kind.value} write for {symbol} "
                    f"(version {version} < {existing.version})"
                )
                return False

        if kind is DataKind.CANDLE:
            if not data:
                return False
            data = self._merge_candles(existing.data if existing else [], data)

        applied_version = version if version is not None else (existing.version if existing else None)
        self._entries[key] = CacheEntry(data=data, written_at=self.clock(), version=applied_version)

        self._publish(symbol, kind, interval, data)
        return True

    def _merge_candles(self, current: List[Candle], incoming: List[Candle]) -> List[Candle]:
        by_open_time = {candle.timestamp: candle for candle in current}
        for candle in incoming:
            by_open_time[candle.timestamp] = candle
        merged = [by_open_time[ts] for ts in sorted(by_open_time)]
        return merged[-self.retention:]

    def _publish(self, symbol: str, kind: DataKind, interval: Optional[str], data: Any) -> None:
        if self.hub is None:
            return
        if kind is DataKind.CANDLE:
            self.hub.publish(kind, CandleUpdate(symbol=symbol, interval=interval, candle=data[-1]))
        else:
            self.hub.publish(kind, data)


_EXPECTED_TYPES = {
    DataKind.PRICE: PriceTick,
    DataKind.ORDERBOOK: OrderBookSnapshot,
}


def _check_type(kind: DataKind, data: Any) -> None:
    if kind is DataKind.CANDLE:
        if not isinstance(data, list) or not all(isinstance(c, Candle) for c in data):
            raise TypeError("candle data must be a list of Candle")
        return
    expected = _EXPECTED_TYPES[kind]
    if not isinstance(data, expected):
        raise TypeError(f"{kind.value} data must be {expected.__name__}, got {type(data).__name__}")
