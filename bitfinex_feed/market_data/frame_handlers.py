"""
Inbound frame classification and decoding.

Control frames are JSON objects carrying an ``event`` discriminator; channel
frames are JSON arrays ``[chanId, payload]``. Handlers raise
FrameDecodingError subclasses for frames they cannot use; the session logs
and discards those frames.
"""

import json
from typing import Any, Dict, Optional

from bitfinex_feed.core.event_hub import EventHubInterface, EventType
from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.decoders import (CandleDecoder, TickDecoder,
                                                is_candle_key)
from bitfinex_feed.market_data.errors import (MalformedFrameError,
                                              UnboundChannelError,
                                              UnknownChannelError,
                                              UnknownEventError)
from bitfinex_feed.market_data.liveness import ActivityClock
from bitfinex_feed.market_data.subscription_registry import SubscriptionRegistry

HEARTBEAT_MARKER = "hb"


class FrameKind:
    """Frame categories recognised by the classifier."""

    CONTROL: str = "control"
    CHANNEL: str = "channel"


class FrameClassifier:
    """Routes a raw frame by its first character."""

    @staticmethod
    def classify(message: str) -> str:
        """Return the FrameKind of ``message``.

        Raises:
            MalformedFrameError: If the frame starts with anything but ``{`` or ``[``
        """
        if message.startswith("{"):
            return FrameKind.CONTROL
        if message.startswith("["):
            return FrameKind.CHANNEL
        raise MalformedFrameError(f"Got unknown callback: {message}")


def _require(data: Dict[str, Any], field: str, expected: type) -> Any:
    value = data.get(field)
    if not isinstance(value, expected) or isinstance(value, bool):
        raise MalformedFrameError(
            f"Field '{field}' missing or not {expected.__name__}: {data}"
        )
    return value


class ControlFrameHandler:
    """Applies control events to the registry and activity clock.

    Attributes:
        _registry: Channel bindings updated on (un)subscribe acknowledgements
        _activity: Refreshed by every decoded control frame
        _event_hub: Optional sink for channel lifecycle events
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        activity: ActivityClock,
        event_hub: Optional[EventHubInterface] = None,
    ) -> None:
        self._registry = registry
        self._activity = activity
        self._event_hub = event_hub
        self._logger = get_module_logger("control_frame_handler")

    def handle(self, message: str) -> str:
        """Decode and apply one control frame.

        Returns:
            The event name that was handled

        Raises:
            MalformedFrameError: Invalid JSON, not an object, or missing fields
            UnknownEventError: Unrecognised ``event`` value
            UnknownChannelError: ``subscribed`` for an unsupported channel type
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Failed to parse control frame: {e}")
        if not isinstance(data, dict):
            raise MalformedFrameError(f"Control frame is not an object: {message}")

        event = data.get("event")
        if event == "info":
            self._logger.debug(f"Info event: {data}")
        elif event == "subscribed":
            self._handle_subscribed(data)
        elif event == "unsubscribed":
            self._handle_unsubscribed(data)
        elif event == "pong":
            pass
        elif event == "error":
            self._logger.error(
                f"Server reported error {data.get('code')}: {data.get('msg')}"
            )
        elif event is None:
            raise MalformedFrameError(f"Control frame has no event: {message}")
        else:
            raise UnknownEventError(f"Unknown event: {message}")

        self._activity.touch()
        return event

    def _handle_subscribed(self, data: Dict[str, Any]) -> None:
        channel = data.get("channel")
        if channel == "ticker":
            key = _require(data, "symbol", str)
        elif channel == "candles":
            key = _require(data, "key", str)
        else:
            raise UnknownChannelError(f"Unknown subscribed callback {data}")

        channel_id = _require(data, "chanId", int)
        self._logger.info(f"Registering {key} on channel {channel_id}")
        binding = self._registry.bind(channel_id, key)
        self._publish(
            EventType.CHANNEL_SUBSCRIBED,
            {"channel_id": binding.channel_id, "key": binding.symbol_key},
        )

    def _handle_unsubscribed(self, data: Dict[str, Any]) -> None:
        channel_id = _require(data, "chanId", int)
        key = self._registry.unbind(channel_id)
        self._logger.info(f"Channel {channel_id} ({key}) is unsubscribed")
        self._publish(
            EventType.CHANNEL_UNSUBSCRIBED, {"channel_id": channel_id, "key": key}
        )

    def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._event_hub is not None:
            self._event_hub.publish(event_type, data)


class ChannelFrameHandler:
    """Resolves channel frames to their key and routes the payload."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        activity: ActivityClock,
        tick_decoder: TickDecoder,
        candle_decoder: CandleDecoder,
    ) -> None:
        self._registry = registry
        self._activity = activity
        self._tick_decoder = tick_decoder
        self._candle_decoder = candle_decoder
        self._logger = get_module_logger("channel_frame_handler")

    def handle(self, message: str) -> int:
        """Decode one channel frame and dispatch its points.

        Returns:
            Number of PricePoints decoded (0 for heartbeats)

        Raises:
            MalformedFrameError: Invalid JSON or wrong frame shape
            UnboundChannelError: No live binding for the channel id
        """
        try:
            frame = json.loads(message)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Failed to parse channel frame: {e}")

        if (
            not isinstance(frame, list)
            or len(frame) < 2
            or not isinstance(frame[0], int)
            or isinstance(frame[0], bool)
        ):
            raise MalformedFrameError(f"No match found for message {message}")

        channel_id, payload = frame[0], frame[1]
        if payload == HEARTBEAT_MARKER:
            self._activity.touch()
            return 0
        if not isinstance(payload, list):
            raise MalformedFrameError(f"No match found for message {message}")

        self._activity.touch()

        key = self._registry.symbol_for_channel(channel_id)
        if key is None:
            raise UnboundChannelError(
                f"Channel {channel_id} has no binding: {message}"
            )

        if is_candle_key(key):
            points = self._candle_decoder.handle(key, payload)
        else:
            points = self._tick_decoder.handle(key, payload)
        return len(points)
