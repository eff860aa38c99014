"""
Outbound protocol commands.

Each command renders the exact wire text for one request. The session treats
the rendered text as opaque and only forwards it to the transport.
"""

import itertools
import json
from abc import ABC, abstractmethod
from typing import Any, Dict

from bitfinex_feed.market_data.decoders import TRADE_KEY_MARKER, is_candle_key

_ping_ids = itertools.count(1)


class IApiCommand(ABC):
    """Interface for commands sent over the session."""

    @abstractmethod
    def get_command(self, session: Any) -> str:
        """Render the wire text for this command.

        Args:
            session: The session the command is sent on

        Returns:
            JSON text to send
        """
        pass


class _JsonCommand(IApiCommand):
    @abstractmethod
    def _payload(self) -> Dict[str, Any]:
        pass

    def get_command(self, session: Any) -> str:
        return json.dumps(self._payload())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._payload()!r})"


class SubscribeTicker(_JsonCommand):
    """Subscribe to the ticker channel of a pair such as ``tBTCUSD``."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol

    def _payload(self) -> Dict[str, Any]:
        return {"event": "subscribe", "channel": "ticker", "symbol": self.symbol}


class SubscribeCandles(_JsonCommand):
    """Subscribe to a candle channel identified by ``trade:<timeframe>:<symbol>``."""

    def __init__(self, key: str) -> None:
        self.key = key

    @classmethod
    def for_symbol(cls, symbol: str, timeframe: str = "1m") -> "SubscribeCandles":
        return cls(f"{TRADE_KEY_MARKER}:{timeframe}:{symbol}")

    def _payload(self) -> Dict[str, Any]:
        return {"event": "subscribe", "channel": "candles", "key": self.key}


class Unsubscribe(_JsonCommand):
    """Unsubscribe from a channel by its server-assigned id."""

    def __init__(self, channel_id: int) -> None:
        self.channel_id = channel_id

    def _payload(self) -> Dict[str, Any]:
        return {"event": "unsubscribe", "chanId": self.channel_id}


class Ping(_JsonCommand):
    """Liveness probe; the server answers with a ``pong`` event."""

    def __init__(self) -> None:
        self.cid = next(_ping_ids)

    def _payload(self) -> Dict[str, Any]:
        return {"event": "ping", "cid": self.cid}


def resubscribe_command(key: str) -> IApiCommand:
    """Build the subscribe command that recreates a channel bound to ``key``."""
    if is_candle_key(key):
        return SubscribeCandles(key)
    return SubscribeTicker(key)
