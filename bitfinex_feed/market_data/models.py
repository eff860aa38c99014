"""
Value objects shared by the decoders, registry and listeners.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable


@dataclass(frozen=True)
class PricePoint:
    """One OHLCV sample.

    Ticker frames produce points with all five values equal to the last
    traded price; candle frames fill each field independently.
    """

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class ChannelBinding:
    """Server-assigned channel id bound to the key it streams."""

    channel_id: int
    symbol_key: str


# Listeners receive the dispatch symbol and the decoded point.
TickListener = Callable[[str, PricePoint], None]
