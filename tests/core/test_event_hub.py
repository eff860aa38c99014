"""Unit tests for the lifecycle EventHub."""

import asyncio
import threading
from typing import Any

import pytest

from bitfinex_feed.core.event_hub import EventHub, EventHubInterface, EventType


class TestEventHubBasics:
    """Subscribe, publish and unsubscribe behaviour."""

    def setup_method(self) -> None:
        self.event_hub = EventHub()
        self.received = []

        def callback(data: Any) -> None:
            self.received.append(data)

        self.callback = callback

    def test_implements_interface(self) -> None:
        assert isinstance(self.event_hub, EventHubInterface)

    def test_subscriber_receives_event(self) -> None:
        self.event_hub.subscribe(EventType.CONNECTION_LOST, self.callback)

        self.event_hub.publish(EventType.CONNECTION_LOST, {"reason": "eof"})

        assert self.received == [{"reason": "eof"}]

    def test_duplicate_subscription_ignored(self) -> None:
        self.event_hub.subscribe(EventType.CONNECTION_LOST, self.callback)
        self.event_hub.subscribe(EventType.CONNECTION_LOST, self.callback)

        assert self.event_hub._subscribers[EventType.CONNECTION_LOST] == [self.callback]

    def test_unsubscribe_removes_event_type(self) -> None:
        self.event_hub.subscribe(EventType.CHANNEL_SUBSCRIBED, self.callback)

        self.event_hub.unsubscribe(EventType.CHANNEL_SUBSCRIBED, self.callback)
        self.event_hub.publish(EventType.CHANNEL_SUBSCRIBED, {})

        assert self.received == []
        assert EventType.CHANNEL_SUBSCRIBED not in self.event_hub._subscribers

    def test_unsubscribe_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            self.event_hub.unsubscribe(EventType.CONNECTION_LOST, self.callback)

    def test_invalid_arguments(self) -> None:
        with pytest.raises(ValueError):
            self.event_hub.subscribe("", self.callback)
        with pytest.raises(TypeError):
            self.event_hub.subscribe(EventType.CONNECTION_LOST, "not callable")
        with pytest.raises(ValueError):
            self.event_hub.publish("", {})

    def test_failing_callback_does_not_block_others(self) -> None:
        def failing(data: Any) -> None:
            raise RuntimeError("boom")

        self.event_hub.subscribe(EventType.RECONNECT_FAILED, failing)
        self.event_hub.subscribe(EventType.RECONNECT_FAILED, self.callback)

        self.event_hub.publish(EventType.RECONNECT_FAILED, {"reason": "x"})

        assert self.received == [{"reason": "x"}]

    def test_clear_subscribers(self) -> None:
        self.event_hub.subscribe(EventType.CONNECTION_LOST, self.callback)
        self.event_hub.subscribe(EventType.CONNECTION_RESTORED, self.callback)

        self.event_hub.clear_subscribers(EventType.CONNECTION_LOST)
        assert EventType.CONNECTION_LOST not in self.event_hub._subscribers
        assert self.event_hub._subscribers[EventType.CONNECTION_RESTORED] == [
            self.callback
        ]

        self.event_hub.clear_subscribers()
        assert self.event_hub._subscribers == {}


class TestEventHubConcurrency:
    """Thread-safety and async callback support."""

    def test_concurrent_subscribe(self) -> None:
        event_hub = EventHub()
        callbacks = [lambda data, i=i: None for i in range(50)]

        threads = [
            threading.Thread(
                target=event_hub.subscribe, args=(EventType.CONNECTION_LOST, cb)
            )
            for cb in callbacks
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(event_hub._subscribers[EventType.CONNECTION_LOST]) == 50

    @pytest.mark.asyncio
    async def test_async_callback_scheduled_on_running_loop(self) -> None:
        event_hub = EventHub()
        received = []

        async def async_callback(data: Any) -> None:
            received.append(data)

        event_hub.subscribe(EventType.CONNECTION_RESTORED, async_callback)
        event_hub.publish(EventType.CONNECTION_RESTORED, {"channels": 2})
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert received == [{"channels": 2}]
