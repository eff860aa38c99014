"""Shared fixtures for market data tests."""

import asyncio
import itertools
import json
from typing import Callable, List, Optional

import pytest

from bitfinex_feed.core.config_manager import SessionConfig
from bitfinex_feed.market_data.errors import TransportError
from bitfinex_feed.market_data.transport import ITransport


class FakeTransport(ITransport):
    """In-memory transport that records traffic and lets tests inject frames.

    With ``auto_acknowledge`` set, every subscribe command is answered with a
    ``subscribed`` frame carrying a fresh channel id, delivered on the next
    loop iteration the way a real server reply would arrive.
    """

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.connect_count = 0
        self.close_count = 0
        self.connected = False
        self.fail_connect: Optional[Exception] = None
        self.fail_send: Optional[Exception] = None
        self.auto_acknowledge = False
        self._channel_ids = itertools.count(100)
        self._message_handlers: List[Callable[[str], None]] = []
        self._close_handlers: List[Callable[[], None]] = []

    async def connect(self) -> None:
        self.connect_count += 1
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connected = True

    async def close(self) -> None:
        self.close_count += 1
        self.connected = False

    async def send_message(self, message: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        if not self.connected:
            raise TransportError("WebSocket not connected")
        self.sent.append(message)
        if self.auto_acknowledge:
            self._acknowledge(json.loads(message))

    def add_message_handler(self, handler: Callable[[str], None]) -> None:
        self._message_handlers.append(handler)

    def remove_message_handler(self, handler: Callable[[str], None]) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    def add_close_handler(self, handler: Callable[[], None]) -> None:
        self._close_handlers.append(handler)

    def deliver(self, message: str) -> None:
        for handler in list(self._message_handlers):
            handler(message)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self.connected = False
        for handler in list(self._close_handlers):
            handler()

    def sent_events(self) -> List[dict]:
        return [json.loads(message) for message in self.sent]

    def _acknowledge(self, command: dict) -> None:
        if command.get("event") != "subscribe":
            return
        reply = {
            "event": "subscribed",
            "channel": command["channel"],
            "chanId": next(self._channel_ids),
        }
        if command["channel"] == "ticker":
            reply["symbol"] = command["symbol"]
        else:
            reply["key"] = command["key"]
        asyncio.get_running_loop().call_soon(self.deliver, json.dumps(reply))


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session_config() -> SessionConfig:
    """Settings with a dormant liveness loop and fast resubscription polling."""
    return SessionConfig(
        heartbeat_interval=3600.0,
        stale_after=3600.0,
        resubscribe_poll_interval=0.01,
        resubscribe_timeout=1.0,
    )


class FrameFactory:
    """Builders for wire frames used across tests."""

    @staticmethod
    def ticker(channel_id: int, price: float) -> str:
        return json.dumps(
            [channel_id, [1.0, 2.0, 3.0, 4.0, 5.0, 0.01, price, 100.0, 7.0, 0.5]]
        )

    @staticmethod
    def candles(channel_id: int, *tuples: list) -> str:
        return json.dumps([channel_id, list(tuples)])

    @staticmethod
    def heartbeat(channel_id: int) -> str:
        return json.dumps([channel_id, "hb"])

    @staticmethod
    def subscribed_ticker(channel_id: int, symbol: str) -> str:
        return json.dumps(
            {
                "event": "subscribed",
                "channel": "ticker",
                "chanId": channel_id,
                "symbol": symbol,
            }
        )

    @staticmethod
    def subscribed_candles(channel_id: int, key: str) -> str:
        return json.dumps(
            {
                "event": "subscribed",
                "channel": "candles",
                "chanId": channel_id,
                "key": key,
            }
        )

    @staticmethod
    def unsubscribed(channel_id: int) -> str:
        return json.dumps(
            {"event": "unsubscribed", "status": "OK", "chanId": channel_id}
        )


@pytest.fixture
def frames() -> type:
    return FrameFactory
