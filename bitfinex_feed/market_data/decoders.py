"""
Payload decoders for ticker and candle channels.

Both decoders turn an already-parsed JSON payload into PricePoints and fan
them out through the SubscriptionRegistry on the caller's context.
"""

import time
from datetime import datetime, timezone, tzinfo
from typing import Any, List, Optional, Sequence
from zoneinfo import ZoneInfo

from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.errors import MalformedFrameError
from bitfinex_feed.market_data.models import PricePoint
from bitfinex_feed.market_data.subscription_registry import SubscriptionRegistry

# Ticker tuple: BID, BID_SIZE, ASK, ASK_SIZE, DAILY_CHANGE,
# DAILY_CHANGE_PERC, LAST_PRICE, VOLUME, HIGH, LOW
LAST_PRICE_INDEX = 6

# Candle tuple: MTS, OPEN, CLOSE, HIGH, LOW, VOLUME
CANDLE_FIELD_COUNT = 6

TRADE_KEY_MARKER = "trade"


def resolve_timezone(name: str) -> tzinfo:
    """Map a configured zone name to a tzinfo, ``UTC`` being the default."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _is_tuple(value: Any) -> bool:
    return isinstance(value, list) and not any(isinstance(v, list) for v in value)


def _as_tuples(payload: Any) -> List[List[Any]]:
    """Normalise a payload to a list of flat tuples.

    Snapshots arrive as a list of tuples, updates as a single tuple.
    """
    if not isinstance(payload, list):
        raise MalformedFrameError(f"Payload is not a list: {payload!r}")
    if not payload:
        return []
    if _is_tuple(payload):
        return [payload]
    if all(_is_tuple(item) for item in payload):
        return payload
    raise MalformedFrameError(f"Payload mixes tuples and scalars: {payload!r}")


def _number(fields: Sequence[Any], index: int) -> float:
    try:
        value = fields[index]
    except IndexError:
        raise MalformedFrameError(
            f"Tuple has {len(fields)} fields, expected index {index}"
        )
    if isinstance(value, bool):
        raise MalformedFrameError(f"Field {index} is not numeric: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedFrameError(f"Field {index} is not numeric: {value!r}")


class TickDecoder:
    """Decodes ticker tuples into flat PricePoints stamped with local time."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        exchange_timezone: tzinfo = timezone.utc,
    ) -> None:
        self._registry = registry
        self._timezone = exchange_timezone
        self._logger = get_module_logger("tick_decoder")

    def decode(self, payload: Any) -> List[PricePoint]:
        """Parse a ticker payload without dispatching.

        Raises:
            MalformedFrameError: If a tuple is short or its price is not numeric
        """
        points = []
        for fields in _as_tuples(payload):
            price = _number(fields, LAST_PRICE_INDEX)
            now = datetime.fromtimestamp(time.time(), tz=self._timezone)
            points.append(PricePoint(now, price, price, price, price, price))
        return points

    def handle(self, symbol: str, payload: Any) -> List[PricePoint]:
        """Decode a ticker payload and dispatch each point to ``symbol`` listeners."""
        points = self.decode(payload)
        for point in points:
            self._registry.dispatch(symbol, symbol, point)
        self._logger.debug(f"Dispatched {len(points)} tick(s) for {symbol}")
        return points


class CandleDecoder:
    """Decodes candle tuples, ordering each batch by candle time."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        exchange_timezone: tzinfo = timezone.utc,
    ) -> None:
        self._registry = registry
        self._timezone = exchange_timezone
        self._logger = get_module_logger("candle_decoder")

    @staticmethod
    def symbol_from_key(key: str) -> str:
        """Extract the pair from a ``trade:<timeframe>:<symbol>`` key.

        Raises:
            MalformedFrameError: If the key has fewer than three components
        """
        parts = key.split(":")
        if len(parts) < 3:
            raise MalformedFrameError(f"Candle key has no symbol component: {key}")
        return parts[2]

    def decode(self, payload: Any) -> List[PricePoint]:
        """Parse candle tuples into PricePoints sorted ascending by timestamp.

        Wire order is MTS, OPEN, CLOSE, HIGH, LOW, VOLUME.
        """
        points = []
        for fields in _as_tuples(payload):
            if len(fields) < CANDLE_FIELD_COUNT:
                raise MalformedFrameError(
                    f"Candle tuple has {len(fields)} fields, "
                    f"expected {CANDLE_FIELD_COUNT}"
                )
            millis = _number(fields, 0)
            timestamp = datetime.fromtimestamp(millis / 1000.0, tz=self._timezone)
            points.append(
                PricePoint(
                    timestamp=timestamp,
                    open=_number(fields, 1),
                    close=_number(fields, 2),
                    high=_number(fields, 3),
                    low=_number(fields, 4),
                    volume=_number(fields, 5),
                )
            )
        points.sort(key=lambda point: point.timestamp)
        return points

    def handle(self, key: str, payload: Any) -> List[PricePoint]:
        """Decode a candle payload and dispatch the sorted batch.

        Listeners are looked up by the full channel key and receive the
        pair symbol extracted from it.
        """
        symbol = self.symbol_from_key(key)
        points = self.decode(payload)
        for point in points:
            self._registry.dispatch(key, symbol, point)
        self._logger.debug(f"Dispatched {len(points)} candle(s) for {key}")
        return points


def is_candle_key(key: Optional[str]) -> bool:
    return key is not None and TRADE_KEY_MARKER in key
