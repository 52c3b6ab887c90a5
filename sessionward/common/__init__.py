"""Common utilities and shared components for sessionward."""

from .clock import Clock, SystemClock, utc_now
from .config import (
    Config,
    DatabaseConfig,
    FileLoggingConfig,
    LockoutConfig,
    LoggingConfig,
    PasswordConfig,
    ThrottleConfig,
    TokenConfig,
)
from .logging_config import setup_logging

__all__ = [
    "Clock",
    "SystemClock",
    "utc_now",
    "Config",
    "DatabaseConfig",
    "FileLoggingConfig",
    "LockoutConfig",
    "LoggingConfig",
    "PasswordConfig",
    "ThrottleConfig",
    "TokenConfig",
    "setup_logging",
]
