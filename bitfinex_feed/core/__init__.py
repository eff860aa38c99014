"""
Core module for feed infrastructure.

Contains configuration, logging and the lifecycle event hub.
"""

from .config_manager import (ConfigManager, ConfigurationError, SessionConfig,
                             create_config_manager)
from .event_hub import EventHub, EventHubInterface, EventType

__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "SessionConfig",
    "create_config_manager",
    "EventHub",
    "EventType",
    "EventHubInterface",
]
