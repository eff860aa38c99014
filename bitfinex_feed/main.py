"""
Command-line entry point for the Bitfinex feed.

Loads configuration, configures logging, connects a session, subscribes the
configured ticker and candle streams and logs every PricePoint until SIGINT
or SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from bitfinex_feed.core.config_manager import (ConfigManager,
                                               ConfigurationError,
                                               create_config_manager)
from bitfinex_feed.core.event_hub import EventHub, EventType
from bitfinex_feed.core.logger import create_feed_logger
from bitfinex_feed.market_data.errors import TransportError
from bitfinex_feed.market_data.models import PricePoint
from bitfinex_feed.market_data.session import (BitfinexSession,
                                               create_bitfinex_session)


class FeedApplication:
    """
    Wires configuration, logging, the event hub and one streaming session.
    """

    def __init__(self, config_manager: ConfigManager) -> None:
        self._config_manager = config_manager
        self._event_hub = EventHub()
        self._logger: Optional[logging.Logger] = None
        self._session: Optional[BitfinexSession] = None
        self._shutdown_event = asyncio.Event()

    def initialize(self) -> None:
        """
        Load configuration and build the logger and session.

        Raises:
            ConfigurationError: If configuration cannot be loaded
        """
        self._config_manager.load_configuration()
        log_level = self._config_manager.get_logging_config()["log_level"]
        self._logger = create_feed_logger(log_level=log_level)

        for event_type in (
            EventType.CONNECTION_LOST,
            EventType.CONNECTION_RESTORED,
            EventType.RECONNECT_FAILED,
            EventType.CONNECTION_STALE,
        ):
            self._event_hub.subscribe(event_type, self._log_lifecycle(event_type))

        self._session = create_bitfinex_session(self._config_manager, self._event_hub)

    def _log_lifecycle(self, event_type: str):
        def handler(data) -> None:
            self._logger.info(f"Session event {event_type}: {data}")

        return handler

    def _on_price(self, symbol: str, point: PricePoint) -> None:
        self._logger.info(
            f"{symbol} {point.timestamp.isoformat()} "
            f"O={point.open} H={point.high} L={point.low} "
            f"C={point.close} V={point.volume}"
        )

    async def run(self) -> None:
        """Connect, subscribe and stream until a shutdown signal arrives."""
        session_config = self._config_manager.get_session_config()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._shutdown_event.set)
            except NotImplementedError:
                self._logger.warning(f"Cannot install handler for {signum}")

        await self._session.connect()
        try:
            for symbol in session_config.ticker_symbols:
                self._session.register_listener(symbol, self._on_price)
                await self._session.subscribe_ticker(symbol)

            for symbol in session_config.candle_symbols:
                key = await self._session.subscribe_candles(
                    symbol, session_config.candle_timeframe
                )
                self._session.register_listener(key, self._on_price)

            self._logger.info("Feed running... Press Ctrl+C to stop")
            await self._shutdown_event.wait()
        finally:
            await self._session.disconnect()
            self._event_hub.clear_subscribers()


async def async_main() -> int:
    """
    Async entry point.

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    app = FeedApplication(create_config_manager("env"))
    try:
        app.initialize()
        await app.run()
        return 0
    except ConfigurationError as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)
        return 1
    except TransportError as e:
        print(f"FATAL: Connection failed: {e}", file=sys.stderr)
        return 1


def main() -> int:
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        print("\nShutdown requested via keyboard interrupt", file=sys.stderr)
        return 0


if __name__ == "__main__":
    sys.exit(main())
