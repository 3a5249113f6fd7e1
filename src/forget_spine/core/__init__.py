"""
forget-spine core primitives: errors, logging, settings.
"""

from forget_spine.core.errors import (
    ConcurrentUpdateError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    FieldParseError,
    ForgetError,
    InvalidConfigError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationError,
)
from forget_spine.core.logging import LogContext, configure_logging, get_logger
from forget_spine.core.settings import Settings, get_settings, reset_settings, resolve_redis_url

__all__ = [
    "ConcurrentUpdateError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "FieldParseError",
    "ForgetError",
    "InvalidConfigError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    "ValidationError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "Settings",
    "get_settings",
    "reset_settings",
    "resolve_redis_url",
]
