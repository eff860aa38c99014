"""
Market data module for the Bitfinex feed.

Handles the websocket session, frame decoding, channel bookkeeping and
listener dispatch for ticker and candle streams.
"""

from .commands import (IApiCommand, Ping, SubscribeCandles, SubscribeTicker,
                       Unsubscribe, resubscribe_command)
from .decoders import CandleDecoder, TickDecoder
from .errors import (BitfinexFeedError, FrameDecodingError,
                     MalformedFrameError, ReconnectTimeoutError,
                     TransportError, UnboundChannelError, UnknownChannelError,
                     UnknownEventError, UnknownSymbolError)
from .frame_handlers import (ChannelFrameHandler, ControlFrameHandler,
                             FrameClassifier, FrameKind)
from .liveness import ActivityClock, LivenessMonitor
from .models import ChannelBinding, PricePoint, TickListener
from .session import (BitfinexSession, ConnectionState,
                      create_bitfinex_session, create_session)
from .subscription_registry import CHANNEL_NOT_FOUND, SubscriptionRegistry
from .transport import ITransport, WebSocketTransport

__all__ = [
    # Commands
    "IApiCommand",
    "Ping",
    "SubscribeCandles",
    "SubscribeTicker",
    "Unsubscribe",
    "resubscribe_command",
    # Decoding
    "CandleDecoder",
    "TickDecoder",
    "ChannelFrameHandler",
    "ControlFrameHandler",
    "FrameClassifier",
    "FrameKind",
    # Errors
    "BitfinexFeedError",
    "FrameDecodingError",
    "MalformedFrameError",
    "ReconnectTimeoutError",
    "TransportError",
    "UnboundChannelError",
    "UnknownChannelError",
    "UnknownEventError",
    "UnknownSymbolError",
    # Liveness
    "ActivityClock",
    "LivenessMonitor",
    # Models and registry
    "ChannelBinding",
    "PricePoint",
    "TickListener",
    "CHANNEL_NOT_FOUND",
    "SubscriptionRegistry",
    # Session and transport
    "BitfinexSession",
    "ConnectionState",
    "create_bitfinex_session",
    "create_session",
    "ITransport",
    "WebSocketTransport",
]
