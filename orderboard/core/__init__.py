"""
Core module initialization.
Exports configuration and logging utilities.
"""

from orderboard.core.config import (
    get_settings,
    setup_logging,
    Settings,
    EnvironmentMode,
    ConfigurationError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "ConfigurationError",
]
