"""
Bitfinex Feed Package

Streaming market-data client for the Bitfinex v2 public websocket: channel
bookkeeping, frame decoding, listener fan-out and transparent reconnects.
"""

__version__ = "1.0.0"
__author__ = "Trading Bot Team"
