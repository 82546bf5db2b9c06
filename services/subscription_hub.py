"""
Subscription Hub - Synchronous Pub/Sub for Market Data Updates

The cache publishes to the hub every time it applies a write; UI consumers and
WebSocket handlers subscribe per data kind ("price", "candle", "orderbook").

Delivery rules:
    - Callbacks run synchronously inside publish(), in registration order
    - Subscribing the same callable twice to one kind registers it once
    - A callback that raises is logged and skipped; later callbacks still run
    - Subscribing or unsubscribing from inside a callback affects the next
      publish, not the one in progress

Async consumers (WebSocket handlers) use queue_subscription(), which bridges
the synchronous callbacks to a bounded asyncio.Queue. A full queue drops the
update rather than blocking the publisher.
"""

import asyncio
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, DefaultDict, Iterator, List, Union

from core.logging import get_logger
from core.schemas import DataKind


Callback = Callable[[Any], None]


class SubscriptionHub:
    """
    Per-kind callback registry.

    Example:
        >>> hub = SubscriptionHub()
        >>> hub.subscribe("price", lambda tick: print(tick.symbol, tick.price))
        >>> hub.publish("price", tick)
        BTCUSDT 65000.0
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[DataKind, List[Callback]] = defaultdict(list)
        self._logger = get_logger(__name__)

    def subscribe(self, kind: Union[DataKind, str], callback: Callback) -> None:
        kind = DataKind(kind)
        callbacks = self._subscribers[kind]
        if callback in callbacks:
            return
        callbacks.append(callback)
        self._logger.debug(f"Subscriber added to '{kind.value}'. total={len(callbacks)}")

    def unsubscribe(self, kind: Union[DataKind, str], callback: Callback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        kind = DataKind(kind)
        callbacks = self._subscribers[kind]
        self._subscribers[kind] = [existing for existing in callbacks if existing != callback]
        self._logger.debug(f"Subscriber removed from '{kind.value}'. total={len(self._subscribers[kind])}")

    def publish(self, kind: Union[DataKind, str], payload: Any) -> None:
        kind = DataKind(kind)
        for callback in list(self._subscribers.get(kind, ())):
            try:
                callback(payload)
            except Exception as e:
                self._logger.error(f"Subscriber {callback!r} failed on '{kind.value}' update: {e}")

    def subscriber_count(self, kind: Union[DataKind, str]) -> int:
        return len(self._subscribers.get(DataKind(kind), ()))

    @contextmanager
    def queue_subscription(
        self,
        kind: Union[DataKind, str],
        max_queue_size: int = 1000
    ) -> Iterator[asyncio.Queue]:
        """
        Subscribe an asyncio.Queue for the duration of a with-block.

        Unsubscribing on exit is what keeps disconnected WebSocket clients
        from leaking queues.

        Example:
            >>> with hub.queue_subscription("price") as queue:
            ...     tick = await queue.get()
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)

        def enqueue(payload: Any) -> None:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                self._logger.warning(f"Dropping '{DataKind(kind).value}' update due to full queue")

        self.subscribe(kind, enqueue)
        try:
            yield queue
        finally:
            self.unsubscribe(kind, enqueue)
