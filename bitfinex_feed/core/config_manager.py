"""
Configuration manager for the Bitfinex market-data feed.

Handles loading and managing configuration settings from environment variables
and configuration files, and turns them into typed session settings.
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

DEFAULT_WEBSOCKET_URL = "wss://api.bitfinex.com/ws/2"


class ConfigurationError(Exception):
    """Custom exception for configuration-related errors."""


@dataclass
class SessionConfig:
    """Typed settings consumed by the streaming session."""

    websocket_url: str = DEFAULT_WEBSOCKET_URL
    auto_reconnect: bool = True
    heartbeat_interval: float = 10.0
    stale_after: float = 30.0
    resubscribe_poll_interval: float = 0.1
    resubscribe_timeout: Optional[float] = 30.0
    exchange_timezone: str = "UTC"
    ticker_symbols: List[str] = field(default_factory=lambda: ["tBTCUSD"])
    candle_symbols: List[str] = field(default_factory=list)
    candle_timeframe: str = "1m"


class IConfigLoader:
    """Interface for configuration loading strategies."""

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from source.

        Returns:
            Dict[str, Any]: Configuration dictionary

        Raises:
            ConfigurationError: If configuration loading fails
        """
        raise NotImplementedError


class EnvConfigLoader(IConfigLoader):
    """Loads configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Optional[str] = None) -> None:
        """
        Initialize environment configuration loader.

        Args:
            env_file_path: Optional path to .env file
        """
        self._env_file_path = env_file_path

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        Returns:
            Dict[str, Any]: Configuration from environment
        """
        if self._env_file_path:
            load_dotenv(self._env_file_path)
        else:
            load_dotenv()

        return {
            "websocket_url": os.getenv("BITFINEX_WS_URL", DEFAULT_WEBSOCKET_URL),
            "auto_reconnect": os.getenv("BITFINEX_AUTO_RECONNECT", "true"),
            "heartbeat_interval": os.getenv("BITFINEX_HEARTBEAT_INTERVAL", "10.0"),
            "stale_after": os.getenv("BITFINEX_STALE_AFTER", "30.0"),
            "resubscribe_poll_interval": os.getenv(
                "BITFINEX_RESUBSCRIBE_POLL_INTERVAL", "0.1"
            ),
            "resubscribe_timeout": os.getenv("BITFINEX_RESUBSCRIBE_TIMEOUT", "30.0"),
            "exchange_timezone": os.getenv("BITFINEX_TIMEZONE", "UTC"),
            "ticker_symbols": os.getenv("BITFINEX_TICKERS", "tBTCUSD"),
            "candle_symbols": os.getenv("BITFINEX_CANDLES", ""),
            "candle_timeframe": os.getenv("BITFINEX_CANDLE_TIMEFRAME", "1m"),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }


class IniConfigLoader(IConfigLoader):
    """Loads configuration from INI configuration files."""

    def __init__(self, config_file_path: str) -> None:
        """
        Initialize INI configuration loader.

        Args:
            config_file_path: Path to configuration INI file
        """
        self._config_file_path = Path(config_file_path)

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from INI file.

        Returns:
            Dict[str, Any]: Configuration from INI file

        Raises:
            ConfigurationError: If config file is missing or invalid
        """
        if not self._config_file_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_file_path}"
            )

        config = configparser.ConfigParser()
        config.read(self._config_file_path)

        return {
            "websocket_url": config.get(
                "connection", "websocket_url", fallback=DEFAULT_WEBSOCKET_URL
            ),
            "auto_reconnect": config.get(
                "connection", "auto_reconnect", fallback="true"
            ),
            "heartbeat_interval": config.get(
                "connection", "heartbeat_interval", fallback="10.0"
            ),
            "stale_after": config.get("connection", "stale_after", fallback="30.0"),
            "resubscribe_poll_interval": config.get(
                "connection", "resubscribe_poll_interval", fallback="0.1"
            ),
            "resubscribe_timeout": config.get(
                "connection", "resubscribe_timeout", fallback="30.0"
            ),
            "exchange_timezone": config.get(
                "market_data", "timezone", fallback="UTC"
            ),
            "ticker_symbols": config.get(
                "market_data", "tickers", fallback="tBTCUSD"
            ),
            "candle_symbols": config.get("market_data", "candles", fallback=""),
            "candle_timeframe": config.get(
                "market_data", "candle_timeframe", fallback="1m"
            ),
            "log_level": config.get("logging", "log_level", fallback="INFO"),
        }


class ConfigManager:
    """
    Central configuration manager for the feed.

    Manages application settings loaded from various sources following
    the Dependency Inversion Principle.
    """

    def __init__(self, config_loader: IConfigLoader) -> None:
        """
        Initialize configuration manager with a config loader.

        Args:
            config_loader: Implementation of IConfigLoader interface
        """
        self._config_loader = config_loader
        self._config: Dict[str, Any] = {}
        self._is_loaded = False

    def load_configuration(self) -> None:
        """
        Load configuration using the injected config loader.

        Raises:
            ConfigurationError: If configuration loading fails
        """
        try:
            self._config = self._config_loader.load_config()
            self._is_loaded = True
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Any: Configuration value

        Raises:
            ConfigurationError: If configuration not loaded
        """
        if not self._is_loaded:
            raise ConfigurationError(
                "Configuration not loaded. Call load_configuration() first."
            )

        return self._config.get(key, default)

    def get_session_config(self) -> SessionConfig:
        """
        Build typed session settings from the loaded configuration.

        Returns:
            SessionConfig: Parsed session settings

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        defaults = SessionConfig()
        try:
            return SessionConfig(
                websocket_url=self.get_config_value(
                    "websocket_url", defaults.websocket_url
                ),
                auto_reconnect=_parse_bool(
                    self.get_config_value("auto_reconnect", "true")
                ),
                heartbeat_interval=float(
                    self.get_config_value(
                        "heartbeat_interval", defaults.heartbeat_interval
                    )
                ),
                stale_after=float(
                    self.get_config_value("stale_after", defaults.stale_after)
                ),
                resubscribe_poll_interval=float(
                    self.get_config_value(
                        "resubscribe_poll_interval",
                        defaults.resubscribe_poll_interval,
                    )
                ),
                resubscribe_timeout=_parse_optional_float(
                    self.get_config_value(
                        "resubscribe_timeout", defaults.resubscribe_timeout
                    )
                ),
                exchange_timezone=self.get_config_value(
                    "exchange_timezone", defaults.exchange_timezone
                ),
                ticker_symbols=_parse_list(
                    self.get_config_value("ticker_symbols", "tBTCUSD")
                ),
                candle_symbols=_parse_list(
                    self.get_config_value("candle_symbols", "")
                ),
                candle_timeframe=self.get_config_value(
                    "candle_timeframe", defaults.candle_timeframe
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid session configuration: {e}")

    def get_logging_config(self) -> Dict[str, str]:
        """
        Get logging configuration.

        Returns:
            Dict[str, str]: Logging settings
        """
        return {"log_level": self.get_config_value("log_level", "INFO")}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def create_config_manager(config_source: str = "env") -> ConfigManager:
    """
    Factory function to create ConfigManager with appropriate loader.

    Args:
        config_source: Configuration source type ('env' or 'ini')

    Returns:
        ConfigManager: Configured instance

    Raises:
        ValueError: If config_source is invalid
    """
    if config_source == "env":
        loader = EnvConfigLoader()
    elif config_source == "ini":
        loader = IniConfigLoader("config.ini")
    else:
        raise ValueError(f"Unsupported config source: {config_source}")

    return ConfigManager(loader)
