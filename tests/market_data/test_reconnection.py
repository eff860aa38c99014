"""
Unit tests for reconnect-and-resubscribe after transport closure.

Covers resubscription of every previously bound channel, listener survival
across the new channel ids, bounded waiting, rejection of concurrent
attempts, cancellation and the auto-reconnect switch.
"""

import asyncio
from unittest.mock import Mock

import pytest

from bitfinex_feed.core.event_hub import EventHub, EventType
from bitfinex_feed.market_data.errors import TransportError
from bitfinex_feed.market_data.session import BitfinexSession, ConnectionState

CANDLE_KEY = "trade:1m:tETHUSD"


@pytest.fixture
def event_hub():
    return EventHub()


@pytest.fixture
def published(event_hub):
    """Records (event_type, data) for every lifecycle event."""
    received = []
    for event_type in (
        EventType.CONNECTION_LOST,
        EventType.CONNECTION_RESTORED,
        EventType.RECONNECT_FAILED,
    ):
        event_hub.subscribe(
            event_type, lambda data, t=event_type: received.append((t, data))
        )
    return received


@pytest.fixture
def session(fake_transport, session_config, event_hub):
    return BitfinexSession(
        transport=fake_transport, config=session_config, event_hub=event_hub
    )


async def bind_two_channels(session, fake_transport, frames):
    await session.connect()
    fake_transport.deliver(frames.subscribed_ticker(5, "tBTCUSD"))
    fake_transport.deliver(frames.subscribed_candles(6, CANDLE_KEY))
    assert len(session.get_channel_map()) == 2


class TestReconnectResubscribe:
    """Successful recovery."""

    @pytest.mark.asyncio
    async def test_resubscribes_every_channel(
        self, session, fake_transport, frames, published
    ):
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.auto_acknowledge = True

        fake_transport.drop()
        assert await session._reconnect_task is True

        assert session.is_connected()
        assert fake_transport.connect_count == 2
        assert fake_transport.sent_events() == [
            {"event": "subscribe", "channel": "ticker", "symbol": "tBTCUSD"},
            {"event": "subscribe", "channel": "candles", "key": CANDLE_KEY},
        ]
        assert sorted(session.get_channel_map().values()) == sorted(
            ["tBTCUSD", CANDLE_KEY]
        )
        assert [event for event, _ in published] == [
            EventType.CONNECTION_LOST,
            EventType.CONNECTION_RESTORED,
        ]
        assert published[-1][1] == {"channels": 2}
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_listeners_survive_new_channel_ids(
        self, session, fake_transport, frames
    ):
        ticker_listener = Mock()
        candle_listener = Mock()
        session.register_listener("tBTCUSD", ticker_listener)
        session.register_listener(CANDLE_KEY, candle_listener)
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.auto_acknowledge = True

        fake_transport.drop()
        await session._reconnect_task

        ticker_channel = session.channel_for_symbol("tBTCUSD")
        candle_channel = session.channel_for_symbol(CANDLE_KEY)
        assert ticker_channel not in (5, 6)
        fake_transport.deliver(frames.ticker(ticker_channel, 42.0))
        fake_transport.deliver(
            frames.candles(candle_channel, [1600000000000, 10, 11, 12, 9, 5])
        )

        ticker_listener.assert_called_once()
        assert ticker_listener.call_args.args[1].close == 42.0
        candle_listener.assert_called_once()
        symbol, point = candle_listener.call_args.args
        assert symbol == "tETHUSD"
        assert point.close == 11
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_stale_frames_from_old_channel_are_discarded(
        self, session, fake_transport, frames
    ):
        listener = Mock()
        session.register_listener("tBTCUSD", listener)
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.auto_acknowledge = True

        fake_transport.drop()
        await session._reconnect_task
        fake_transport.deliver(frames.ticker(5, 1.0))

        listener.assert_not_called()
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_without_channels(self, session, fake_transport, published):
        await session.connect()

        fake_transport.drop()

        assert await session._reconnect_task is True
        assert session.is_connected()
        assert fake_transport.sent == []
        assert published[-1] == (EventType.CONNECTION_RESTORED, {"channels": 0})
        await session.disconnect()


class TestReconnectFailure:
    """Failed, rejected and cancelled attempts."""

    @pytest.mark.asyncio
    async def test_resubscription_timeout(
        self, session, session_config, fake_transport, frames, published
    ):
        session_config.resubscribe_timeout = 0.05
        await bind_two_channels(session, fake_transport, frames)

        fake_transport.drop()

        assert await session._reconnect_task is False
        assert session.get_connection_state() == ConnectionState.DISCONNECTED
        assert not session._liveness.is_running()
        assert published[-1][0] == EventType.RECONNECT_FAILED
        assert "resubscribed" in published[-1][1]["reason"]

    @pytest.mark.asyncio
    async def test_connect_failure_during_reconnect(
        self, session, fake_transport, frames, published
    ):
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.fail_connect = TransportError("refused")

        fake_transport.drop()

        assert await session._reconnect_task is False
        assert session.get_connection_state() == ConnectionState.DISCONNECTED
        assert published[-1] == (EventType.RECONNECT_FAILED, {"reason": "refused"})

    @pytest.mark.asyncio
    async def test_concurrent_reconnect_is_rejected(
        self, session, session_config, fake_transport, frames
    ):
        session_config.resubscribe_timeout = None
        await bind_two_channels(session, fake_transport, frames)

        fake_transport.drop()
        await asyncio.sleep(0)

        assert session.get_connection_state() == ConnectionState.RECONNECTING
        assert await session.reconnect() is False
        assert fake_transport.connect_count == 2

        session._reconnect_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await session._reconnect_task

    @pytest.mark.asyncio
    async def test_cancelled_reconnect_leaves_session_disconnected(
        self, session, session_config, fake_transport, frames, published
    ):
        session_config.resubscribe_timeout = None
        await bind_two_channels(session, fake_transport, frames)

        fake_transport.drop()
        task = session._reconnect_task
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.get_connection_state() == ConnectionState.DISCONNECTED
        assert published[-1] == (EventType.RECONNECT_FAILED, {"reason": "cancelled"})
        assert not session._reconnect_lock.locked()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(
        self, session, session_config, fake_transport, frames
    ):
        session_config.resubscribe_timeout = None
        await bind_two_channels(session, fake_transport, frames)

        fake_transport.drop()
        task = session._reconnect_task
        await asyncio.sleep(0)
        await session.disconnect()

        assert task.cancelled()
        assert session.get_connection_state() == ConnectionState.DISCONNECTED


class TestAutoReconnectSwitch:
    """Behaviour when reconnecting is disabled or the close was requested."""

    @pytest.mark.asyncio
    async def test_drop_with_auto_reconnect_disabled(
        self, session, fake_transport, frames, published
    ):
        await bind_two_channels(session, fake_transport, frames)
        session.set_auto_reconnect(False)

        fake_transport.drop()
        await asyncio.sleep(0)

        assert session.get_connection_state() == ConnectionState.DISCONNECTED
        assert session._reconnect_task is None
        assert fake_transport.connect_count == 1
        assert not session._liveness.is_running()
        assert published == [(EventType.CONNECTION_LOST, {})]

    @pytest.mark.asyncio
    async def test_close_after_manual_disconnect_is_ignored(
        self, session, fake_transport, published
    ):
        await session.connect()
        await session.disconnect()

        fake_transport.drop()

        assert session._reconnect_task is None
        assert published == []


class TestSessionReuse:
    """Connecting again after the session fell back to DISCONNECTED."""

    async def assert_single_dispatch(self, session, fake_transport, frames, listener):
        assert fake_transport._message_handlers == [session.handle_message]
        fake_transport.deliver(frames.subscribed_ticker(7, "tBTCUSD"))
        fake_transport.deliver(frames.ticker(7, 99.0))
        assert listener.call_count == 1

    @pytest.mark.asyncio
    async def test_connect_after_failed_reconnect(
        self, session, fake_transport, frames
    ):
        listener = Mock()
        session.register_listener("tBTCUSD", listener)
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.fail_connect = TransportError("refused")
        fake_transport.drop()
        assert await session._reconnect_task is False
        assert fake_transport._message_handlers == []

        fake_transport.fail_connect = None
        await session.connect()

        assert session.is_connected()
        await self.assert_single_dispatch(session, fake_transport, frames, listener)
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_connect_after_close_with_auto_reconnect_disabled(
        self, session, fake_transport, frames
    ):
        listener = Mock()
        session.register_listener("tBTCUSD", listener)
        await bind_two_channels(session, fake_transport, frames)
        session.set_auto_reconnect(False)
        fake_transport.drop()
        assert fake_transport._message_handlers == []

        await session.connect()

        assert session._liveness.is_running()
        await self.assert_single_dispatch(session, fake_transport, frames, listener)
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_failed_reconnect(
        self, session, fake_transport, frames
    ):
        listener = Mock()
        session.register_listener("tBTCUSD", listener)
        await session.connect()
        fake_transport.fail_connect = TransportError("refused")
        fake_transport.drop()
        assert await session._reconnect_task is False

        fake_transport.fail_connect = None
        assert await session.reconnect() is True

        await self.assert_single_dispatch(session, fake_transport, frames, listener)
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_connect_while_reconnecting_is_ignored(
        self, session, session_config, fake_transport, frames
    ):
        session_config.resubscribe_timeout = None
        await bind_two_channels(session, fake_transport, frames)
        fake_transport.drop()
        await asyncio.sleep(0)
        assert session.get_connection_state() == ConnectionState.RECONNECTING

        await session.connect()

        assert fake_transport.connect_count == 2
        assert fake_transport._message_handlers == [session.handle_message]
        await session.disconnect()


class TestCloseNotificationThreads:
    """Close notifications delivered off the event loop thread."""

    @pytest.mark.asyncio
    async def test_close_from_worker_thread(self, session, fake_transport, published):
        await session.connect()
        session.set_auto_reconnect(False)

        await asyncio.to_thread(session.handle_transport_close)
        await asyncio.sleep(0)

        assert session.get_connection_state() == ConnectionState.DISCONNECTED
        assert published == [(EventType.CONNECTION_LOST, {})]

    def test_close_after_loop_shutdown_is_ignored(self, session, published):
        loop = asyncio.new_event_loop()
        loop.close()
        session._loop = loop

        session.handle_transport_close()

        assert published == []
