"""
Registry of live channel bindings and per-symbol tick listeners.

The channel map (channel id -> symbol key) mirrors what the server has
acknowledged and is rebuilt on every reconnect. The callback map
(symbol key -> listeners) belongs to the caller and survives reconnects.
"""

import threading
from typing import Dict, List, Optional

from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.errors import UnknownSymbolError
from bitfinex_feed.market_data.models import ChannelBinding, PricePoint, TickListener

CHANNEL_NOT_FOUND = -1


class SubscriptionRegistry:
    """Thread-safe channel and listener bookkeeping.

    All mutation happens under one re-entrant lock. Lookups that hand data
    out return copies, and dispatch iterates a snapshot of the listener list,
    so listeners may register or remove listeners while being invoked.

    Attributes:
        _channels: Channel id to symbol key, one entry per live channel
        _callbacks: Symbol key to listeners in registration order
        _lock: Guards both maps
    """

    def __init__(self) -> None:
        self._channels: Dict[int, str] = {}
        self._callbacks: Dict[str, List[TickListener]] = {}
        self._lock = threading.RLock()
        self._logger = get_module_logger("subscription_registry")

    # Listener side

    def register(self, symbol: str, listener: TickListener) -> None:
        """Append a listener for ``symbol``; duplicates are kept and each fires.

        Raises:
            TypeError: If listener is not callable
        """
        if not callable(listener):
            raise TypeError("Listener must be callable")

        with self._lock:
            self._callbacks.setdefault(symbol, []).append(listener)

    def remove(self, symbol: str, listener: TickListener) -> bool:
        """Remove the first listener equal to ``listener``.

        Returns:
            True if a listener was removed, False if none matched

        Raises:
            UnknownSymbolError: If nothing was ever registered for symbol
        """
        with self._lock:
            listeners = self._callbacks.get(symbol)
            if listeners is None:
                raise UnknownSymbolError(f"Unknown ticker string: {symbol}")
            try:
                listeners.remove(listener)
            except ValueError:
                return False
            return True

    def listeners_for(self, symbol: str) -> List[TickListener]:
        with self._lock:
            return list(self._callbacks.get(symbol, []))

    def has_listeners(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._callbacks

    def dispatch(self, key: str, symbol: str, point: PricePoint) -> int:
        """Invoke every listener registered under ``key`` with ``(symbol, point)``.

        Listeners run synchronously in registration order. A raising listener
        is logged and the remaining listeners still run.

        Returns:
            Number of listeners invoked
        """
        listeners = self.listeners_for(key)
        for listener in listeners:
            try:
                listener(symbol, point)
            except Exception as e:
                self._logger.error(f"Listener for {symbol} raised: {e}")
        return len(listeners)

    # Channel side

    def bind(self, channel_id: int, key: str) -> ChannelBinding:
        with self._lock:
            previous = self._channels.get(channel_id)
            if previous is not None and previous != key:
                self._logger.warning(
                    f"Channel {channel_id} rebound from {previous} to {key}"
                )
            self._channels[channel_id] = key
        return ChannelBinding(channel_id, key)

    def unbind(self, channel_id: int) -> Optional[str]:
        """Drop a channel binding and the listeners of the key it carried.

        Returns:
            The key that was bound, or None if the channel was unknown
        """
        with self._lock:
            key = self._channels.pop(channel_id, None)
            if key is not None:
                self._callbacks.pop(key, None)
            return key

    def symbol_for_channel(self, channel_id: int) -> Optional[str]:
        with self._lock:
            return self._channels.get(channel_id)

    def channel_for_symbol(self, symbol: str) -> int:
        """Return the channel id bound to ``symbol`` or ``CHANNEL_NOT_FOUND``."""
        with self._lock:
            for channel_id, key in self._channels.items():
                if key == symbol:
                    return channel_id
        return CHANNEL_NOT_FOUND

    def snapshot_channels(self) -> Dict[int, str]:
        with self._lock:
            return dict(self._channels)

    def clear_channels(self) -> None:
        with self._lock:
            self._channels.clear()

    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)
