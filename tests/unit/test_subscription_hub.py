"""
Unit Tests for the Subscription Hub

Run with:
    pytest tests/unit/test_subscription_hub.py -v
"""

import asyncio

import pytest

from services.subscription_hub import SubscriptionHub


class TestSubscribe:
    """Tests for subscribe()/unsubscribe()"""

    def test_callbacks_run_in_registration_order(self):
        hub = SubscriptionHub()
        calls = []
        hub.subscribe("price", lambda p: calls.append(("first", p)))
        hub.subscribe("price", lambda p: calls.append(("second", p)))

        hub.publish("price", 1)

        assert calls == [("first", 1), ("second", 1)]

    def test_same_callback_registered_once(self):
        hub = SubscriptionHub()
        received = []

        hub.subscribe("price", received.append)
        hub.subscribe("price", received.append)
        hub.publish("price", "tick")

        assert received == ["tick"]
        assert hub.subscriber_count("price") == 1

    def test_kinds_are_independent(self):
        hub = SubscriptionHub()
        prices = []
        hub.subscribe("price", prices.append)

        hub.publish("orderbook", "book")

        assert prices == []

    def test_unsubscribe(self):
        hub = SubscriptionHub()
        received = []
        hub.subscribe("candle", received.append)

        hub.unsubscribe("candle", received.append)
        hub.unsubscribe("candle", received.append)
        hub.publish("candle", "update")

        assert received == []
        assert hub.subscriber_count("candle") == 0

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            SubscriptionHub().subscribe("trades", print)


class TestPublish:
    """Tests for publish() isolation"""

    def test_raising_callback_does_not_stop_others(self):
        hub = SubscriptionHub()
        received = []

        def broken(payload):
            raise RuntimeError("subscriber bug")

        hub.subscribe("price", broken)
        hub.subscribe("price", received.append)

        hub.publish("price", "tick")

        assert received == ["tick"]

    def test_subscribe_during_publish_applies_next_time(self):
        hub = SubscriptionHub()
        late = []

        def adds_subscriber(payload):
            hub.subscribe("price", late.append)

        hub.subscribe("price", adds_subscriber)

        hub.publish("price", 1)
        hub.publish("price", 2)

        assert late == [2]


class TestQueueSubscription:
    """Tests for queue_subscription()"""

    @pytest.mark.asyncio
    async def test_updates_delivered_to_queue(self):
        hub = SubscriptionHub()

        with hub.queue_subscription("price") as queue:
            hub.publish("price", "tick")
            assert await asyncio.wait_for(queue.get(), timeout=1.0) == "tick"

        assert hub.subscriber_count("price") == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_updates(self):
        hub = SubscriptionHub()

        with hub.queue_subscription("price", max_queue_size=1) as queue:
            hub.publish("price", 1)
            hub.publish("price", 2)

            assert queue.qsize() == 1
            assert queue.get_nowait() == 1
