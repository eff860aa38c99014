"""
Logging setup for the Bitfinex market-data feed.

Provides formatter and handler strategies plus factories that configure the
``bitfinex_feed`` logger hierarchy for console and rotating file output.
"""

import logging
import logging.handlers
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER_NAME = "bitfinex_feed"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ILogFormatter(ABC):
    """Interface for log formatting strategies."""

    @abstractmethod
    def get_formatter(self) -> logging.Formatter:
        """
        Get configured log formatter.

        Returns:
            logging.Formatter: Configured formatter instance
        """


class StandardLogFormatter(ILogFormatter):
    """Standard log formatter with timestamp, level, and message."""

    def __init__(self, include_module: bool = True) -> None:
        """
        Initialize standard log formatter.

        Args:
            include_module: Whether to include logger name in format
        """
        self._include_module = include_module

    def get_formatter(self) -> logging.Formatter:
        if self._include_module:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            format_string = "%(asctime)s - %(levelname)s - %(message)s"

        return logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")


class FeedLogFormatter(ILogFormatter):
    """Feed formatter that also records the emitting asyncio task or thread.

    Frames, liveness probes and reconnects run on different tasks, so the
    thread name column keeps interleaved output readable.
    """

    def get_formatter(self) -> logging.Formatter:
        format_string = (
            "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)-40s | "
            "%(threadName)-10s | %(message)s"
        )
        return logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")


class ILogHandler(ABC):
    """Interface for log handler creation strategies."""

    @abstractmethod
    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        """
        Create configured log handler.

        Args:
            formatter: Log formatter to use

        Returns:
            logging.Handler: Configured handler instance
        """


class ConsoleLogHandler(ILogHandler):
    """Creates console log handler for stderr output."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.StreamHandler()
        handler.setLevel(self._level)
        handler.setFormatter(formatter)
        return handler


class FileLogHandler(ILogHandler):
    """Creates file log handler with rotation support."""

    def __init__(
        self,
        log_file_path: str,
        level: int = logging.DEBUG,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
    ) -> None:
        """
        Initialize file log handler.

        Args:
            log_file_path: Path to log file
            level: Logging level for file output
            max_bytes: Maximum file size before rotation
            backup_count: Number of backup files to keep
        """
        self._log_file_path = Path(log_file_path)
        self._level = level
        self._max_bytes = max_bytes
        self._backup_count = backup_count

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        self._log_file_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            filename=str(self._log_file_path),
            maxBytes=self._max_bytes,
            backupCount=self._backup_count,
        )
        handler.setLevel(self._level)
        handler.setFormatter(formatter)
        return handler


class LoggerManager:
    """
    Owns the configuration of one named logger.

    Handlers are created from strategies so tests and the CLI can choose
    console-only or console plus file output.
    """

    def __init__(self, name: str = ROOT_LOGGER_NAME) -> None:
        self._logger_name = name
        self._logger: Optional[logging.Logger] = None
        self._is_configured = False

    def configure_logger(
        self,
        level: int = logging.INFO,
        formatter: Optional[ILogFormatter] = None,
        handlers: Optional[Dict[str, ILogHandler]] = None,
    ) -> None:
        """
        Configure logger with specified settings.

        Args:
            level: Base logging level
            formatter: Log formatter strategy
            handlers: Dictionary of handler name to handler strategy
        """
        self._logger = logging.getLogger(self._logger_name)
        self._logger.setLevel(level)

        self._logger.handlers.clear()

        if formatter is None:
            formatter = StandardLogFormatter()
        log_formatter = formatter.get_formatter()

        if handlers is None:
            handlers = {"console": ConsoleLogHandler(level=level)}

        for handler_strategy in handlers.values():
            self._logger.addHandler(handler_strategy.create_handler(log_formatter))

        self._is_configured = True

    def get_logger(self) -> logging.Logger:
        """
        Get configured logger instance.

        Raises:
            RuntimeError: If logger not configured
        """
        if not self._is_configured or self._logger is None:
            raise RuntimeError("Logger not configured. Call configure_logger() first.")

        return self._logger


def create_feed_logger(
    name: str = ROOT_LOGGER_NAME,
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Factory function to create the pre-configured feed logger.

    Args:
        name: Logger name
        log_level: Logging level as string
        log_dir: Directory for a rotating log file; console only when None

    Returns:
        logging.Logger: Configured logger instance
    """
    level = LEVEL_MAP.get(log_level.upper(), logging.INFO)

    handlers: Dict[str, ILogHandler] = {"console": ConsoleLogHandler(level=level)}
    if log_dir:
        log_file = Path(log_dir) / f"{name}_{datetime.now().strftime('%Y%m%d')}.log"
        handlers["file"] = FileLogHandler(str(log_file), level=logging.DEBUG)

    manager = LoggerManager(name)
    manager.configure_logger(
        level=level, formatter=FeedLogFormatter(), handlers=handlers
    )
    return manager.get_logger()


def get_module_logger(module_name: str) -> logging.Logger:
    """
    Get logger for specific module.

    Args:
        module_name: Name of the module

    Returns:
        logging.Logger: Module-specific logger
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")
