"""
Streaming session for the Bitfinex public market-data websocket.

The session owns the transport, classifies and decodes every inbound frame on
the transport's receive task, runs the liveness monitor, and recovers from
transport closure by reconnecting and resubscribing every channel that was
live before the drop.
"""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from bitfinex_feed.core.config_manager import (DEFAULT_WEBSOCKET_URL,
                                               ConfigManager, SessionConfig)
from bitfinex_feed.core.event_hub import EventHubInterface, EventType
from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.commands import (IApiCommand, SubscribeCandles,
                                                SubscribeTicker, Unsubscribe,
                                                resubscribe_command)
from bitfinex_feed.market_data.decoders import (CandleDecoder, TickDecoder,
                                                resolve_timezone)
from bitfinex_feed.market_data.errors import (FrameDecodingError,
                                              ReconnectTimeoutError,
                                              TransportError,
                                              UnboundChannelError)
from bitfinex_feed.market_data.frame_handlers import (ChannelFrameHandler,
                                                      ControlFrameHandler,
                                                      FrameClassifier,
                                                      FrameKind)
from bitfinex_feed.market_data.liveness import ActivityClock, LivenessMonitor
from bitfinex_feed.market_data.models import TickListener
from bitfinex_feed.market_data.subscription_registry import (
    CHANNEL_NOT_FOUND, SubscriptionRegistry)
from bitfinex_feed.market_data.transport import ITransport, WebSocketTransport


class ConnectionState(Enum):
    """Session connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class BitfinexSession:
    """Market-data session over one logical websocket connection.

    Attributes:
        _transport: Duplex connection the session reads from and writes to
        _registry: Channel bindings and tick listeners
        _activity: Last time anything arrived from the server
        _liveness: Periodic ping task, alive while connected
        _auto_reconnect: Whether transport closure triggers a reconnect
        _reconnect_lock: Serializes reconnect attempts
    """

    BITFINEX_URI = DEFAULT_WEBSOCKET_URL

    def __init__(
        self,
        transport: Optional[ITransport] = None,
        config: Optional[SessionConfig] = None,
        event_hub: Optional[EventHubInterface] = None,
        registry: Optional[SubscriptionRegistry] = None,
        activity: Optional[ActivityClock] = None,
    ) -> None:
        """Initialize the session.

        Args:
            transport: Transport to use; a WebSocketTransport on the configured
                URL when omitted
            config: Session settings; defaults when omitted
            event_hub: Optional sink for lifecycle events
            registry: Registry to share; a fresh one when omitted
            activity: Activity clock to share; a fresh one when omitted
        """
        self._config = config or SessionConfig()
        self._transport = transport or WebSocketTransport(self._config.websocket_url)
        self._event_hub = event_hub
        self._registry = registry or SubscriptionRegistry()
        self._activity = activity or ActivityClock()
        self._logger = get_module_logger("bitfinex_session")

        exchange_timezone = resolve_timezone(self._config.exchange_timezone)
        self._control_handler = ControlFrameHandler(
            self._registry, self._activity, event_hub
        )
        self._channel_handler = ChannelFrameHandler(
            self._registry,
            self._activity,
            TickDecoder(self._registry, exchange_timezone),
            CandleDecoder(self._registry, exchange_timezone),
        )
        self._liveness = LivenessMonitor(
            self.send_command,
            self._activity,
            interval=self._config.heartbeat_interval,
            stale_after=self._config.stale_after,
            on_stale=self._handle_stale,
        )

        self._auto_reconnect = self._config.auto_reconnect
        self._state = ConnectionState.DISCONNECTED
        self._manual_disconnect = False
        self._reconnect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._transport.add_close_handler(self.handle_transport_close)

    # Connection lifecycle

    def get_connection_state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self) -> None:
        """Open the transport and start the liveness monitor.

        Raises:
            TransportError: If the transport cannot be opened
        """
        if self._state != ConnectionState.DISCONNECTED:
            self._logger.warning(f"Session busy ({self._state.value}), connect ignored")
            return

        self._loop = asyncio.get_running_loop()
        self._manual_disconnect = False
        self._state = ConnectionState.CONNECTING
        self._attach_message_handler()

        try:
            await self._transport.connect()
        except Exception as e:
            self._transport.remove_message_handler(self.handle_message)
            self._state = ConnectionState.DISCONNECTED
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"Failed to connect: {e}") from e

        self._activity.touch()
        self._state = ConnectionState.CONNECTED
        self._liveness.start()
        self._logger.info("Session connected")
        self._publish(EventType.CONNECTION_ESTABLISHED, {})

    async def disconnect(self) -> None:
        """Stop the liveness monitor and any reconnect, then close the transport."""
        self._manual_disconnect = True
        await self._liveness.stop()

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._transport.remove_message_handler(self.handle_message)
        try:
            await self._transport.close()
        except TransportError as e:
            self._logger.error(f"Error closing transport: {e}")

        self._state = ConnectionState.DISCONNECTED
        self._logger.info("Session disconnected")
        self._publish(EventType.CONNECTION_CLOSED, {})

    async def send_command(self, command: IApiCommand) -> None:
        """Render ``command`` and send it over the transport.

        Raises:
            TransportError: If the send fails
        """
        message = command.get_command(self)
        self._logger.debug(f"Sending: {message}")
        await self._transport.send_message(message)

    async def subscribe_ticker(self, symbol: str) -> None:
        await self.send_command(SubscribeTicker(symbol))

    async def subscribe_candles(
        self, symbol: str, timeframe: Optional[str] = None
    ) -> str:
        """Subscribe to candles for ``symbol``.

        Returns:
            The channel key listeners should be registered under
        """
        command = SubscribeCandles.for_symbol(
            symbol, timeframe or self._config.candle_timeframe
        )
        await self.send_command(command)
        return command.key

    async def unsubscribe(self, channel_id: int) -> None:
        await self.send_command(Unsubscribe(channel_id))

    # Inbound frames

    def handle_message(self, message: str) -> None:
        """Classify, decode and dispatch one inbound frame.

        Decoding problems are logged and the frame is dropped; they never
        propagate into the transport's receive loop.
        """
        self._logger.debug(f"Got message: {message}")
        try:
            kind = FrameClassifier.classify(message)
            if kind == FrameKind.CONTROL:
                self._control_handler.handle(message)
            else:
                self._channel_handler.handle(message)
        except UnboundChannelError as e:
            self._logger.error(f"Protocol violation, frame discarded: {e}")
        except FrameDecodingError as e:
            self._logger.error(f"Frame discarded: {e}")
        except Exception as e:
            self._logger.exception(f"Unexpected error handling frame: {e}")

    # Listeners and subscriptions

    def register_listener(self, symbol: str, listener: TickListener) -> None:
        self._registry.register(symbol, listener)

    def remove_listener(self, symbol: str, listener: TickListener) -> bool:
        """Remove a listener.

        Raises:
            UnknownSymbolError: If no listener was ever registered for symbol
        """
        return self._registry.remove(symbol, listener)

    def channel_for_symbol(self, symbol: str) -> int:
        return self._registry.channel_for_symbol(symbol)

    def is_subscription_active(self, symbol: str) -> bool:
        return self.channel_for_symbol(symbol) != CHANNEL_NOT_FOUND

    def get_channel_map(self) -> Mapping[int, str]:
        """Read-only snapshot of the live channel id to key bindings."""
        return MappingProxyType(self._registry.snapshot_channels())

    # Liveness and reconnect settings

    def get_last_activity_timestamp(self) -> float:
        return self._activity.get()

    def is_auto_reconnect_enabled(self) -> bool:
        return self._auto_reconnect

    def set_auto_reconnect(self, enabled: bool) -> None:
        self._auto_reconnect = enabled

    # Reconnect

    def handle_transport_close(self) -> None:
        """Transport close notification; may arrive from any thread."""
        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = (
                asyncio.get_running_loop()
            )
        except RuntimeError:
            running_loop = None

        if self._loop is None or running_loop is self._loop:
            self._on_transport_closed()
        else:
            try:
                self._loop.call_soon_threadsafe(self._on_transport_closed)
            except RuntimeError:
                # The owning event loop is already closed.
                self._logger.warning(
                    "Transport closed after event loop shutdown, ignored"
                )

    def _on_transport_closed(self) -> None:
        if self._manual_disconnect:
            return

        self._logger.warning("Transport closed unexpectedly")
        self._publish(EventType.CONNECTION_LOST, {})

        if not self._auto_reconnect:
            self._logger.info("Auto-reconnect disabled, session stays disconnected")
            self._transport.remove_message_handler(self.handle_message)
            self._state = ConnectionState.DISCONNECTED
            self._liveness.cancel()
            return

        self._reconnect_task = self._spawn(self.reconnect())

    def _spawn(self, coroutine: Any) -> Optional[asyncio.Task]:
        if self._loop is None:
            coroutine.close()
            self._logger.error("No event loop to run reconnect on")
            return None
        return self._loop.create_task(coroutine)

    async def reconnect(self) -> bool:
        """Reopen the transport and resubscribe every previously bound channel.

        Only one reconnect runs at a time; a call made while another is in
        flight is rejected. Cancelling the task aborts the attempt and leaves
        the session disconnected.

        Returns:
            True when every channel was re-acknowledged, False on failure
        """
        if self._reconnect_lock.locked():
            self._logger.warning("Reconnect already in progress, request rejected")
            return False

        async with self._reconnect_lock:
            self._logger.info("Performing reconnect")
            self._state = ConnectionState.RECONNECTING
            try:
                snapshot = self._registry.snapshot_channels()

                try:
                    await self._transport.close()
                except TransportError as e:
                    self._logger.warning(f"Ignoring error closing broken transport: {e}")
                self._registry.clear_channels()

                await self._transport.connect()
                self._attach_message_handler()

                for key in snapshot.values():
                    await self.send_command(resubscribe_command(key))

                self._logger.info(f"Waiting for {len(snapshot)} channel(s) to resubscribe")
                await self._wait_for_resubscription(len(snapshot))
            except asyncio.CancelledError:
                self._logger.warning("Reconnect cancelled")
                await self._fail_reconnect("cancelled")
                raise
            except Exception as e:
                self._logger.error(f"Got exception while reconnect: {e}", exc_info=True)
                await self._fail_reconnect(str(e))
                return False

            self._activity.touch()
            self._state = ConnectionState.CONNECTED
            self._liveness.start()
            self._logger.info("Reconnect successful")
            self._publish(
                EventType.CONNECTION_RESTORED, {"channels": len(snapshot)}
            )
            return True

    async def _wait_for_resubscription(self, expected: int) -> None:
        loop = asyncio.get_running_loop()
        timeout = self._config.resubscribe_timeout
        deadline = None if timeout is None else loop.time() + timeout

        while self._registry.channel_count() < expected:
            if deadline is not None and loop.time() >= deadline:
                raise ReconnectTimeoutError(
                    f"Only {self._registry.channel_count()} of {expected} "
                    f"channels resubscribed within {timeout}s"
                )
            await asyncio.sleep(self._config.resubscribe_poll_interval)

    async def _fail_reconnect(self, reason: str) -> None:
        await self._liveness.stop()
        self._transport.remove_message_handler(self.handle_message)
        try:
            await self._transport.close()
        except TransportError as e:
            self._logger.warning(f"Error closing transport after failed reconnect: {e}")
        self._state = ConnectionState.DISCONNECTED
        self._publish(EventType.RECONNECT_FAILED, {"reason": reason})

    # Helpers

    def _attach_message_handler(self) -> None:
        # Re-adding after a removal keeps exactly one registration.
        self._transport.remove_message_handler(self.handle_message)
        self._transport.add_message_handler(self.handle_message)

    def _handle_stale(self, elapsed: float) -> None:
        self._publish(EventType.CONNECTION_STALE, {"seconds_since_activity": elapsed})

    def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._event_hub is not None:
            self._event_hub.publish(event_type, data)


def create_bitfinex_session(
    config_manager: Optional[ConfigManager] = None,
    event_hub: Optional[EventHubInterface] = None,
    transport: Optional[ITransport] = None,
) -> BitfinexSession:
    """Factory function to create a BitfinexSession.

    Args:
        config_manager: Loaded configuration manager; defaults used when None
        event_hub: Optional lifecycle event sink
        transport: Optional transport override

    Returns:
        BitfinexSession: Configured, not yet connected session
    """
    config = config_manager.get_session_config() if config_manager else None
    return BitfinexSession(transport=transport, config=config, event_hub=event_hub)


@asynccontextmanager
async def create_session(
    config_manager: Optional[ConfigManager] = None,
    event_hub: Optional[EventHubInterface] = None,
    transport: Optional[ITransport] = None,
):
    """Async context manager for the session lifecycle.

    Example:
        async with create_session(config) as session:
            session.register_listener("tBTCUSD", on_tick)
            await session.subscribe_ticker("tBTCUSD")
            await asyncio.sleep(60)
    """
    session = create_bitfinex_session(config_manager, event_hub, transport)
    await session.connect()
    try:
        yield session
    finally:
        await session.disconnect()
