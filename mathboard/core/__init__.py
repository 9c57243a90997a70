"""
Core infrastructure layer for Mathboard.

Purpose
-------
Single import surface for the infrastructure subsystems:

- Configuration (Config, ConfigManager)
- Database (DatabaseService, DatabaseRetryPolicy)
- Redis (RedisService with retry and circuit breaker)
- Logging (structured logging, LogContext)
- Infrastructure exceptions

Import order matters: `Config` first, then logging (which reads it), then
everything that logs.
"""

from mathboard.core.config.config import Config
from mathboard.core.logging.logger import LogContext, get_logger, setup_logging, shutdown_logging
from mathboard.core.config.manager import ConfigManager
from mathboard.core.database.retry_policy import DatabaseRetryPolicy
from mathboard.core.database.service import DatabaseService
from mathboard.core.exceptions import (
    CircuitBreakerError,
    ConfigurationError,
    ErrorSeverity,
    MathboardInfrastructureException,
    RedisConnectionError,
)
from mathboard.core.redis.service import RedisService

__all__ = [
    "Config",
    "ConfigManager",
    "DatabaseRetryPolicy",
    "DatabaseService",
    "RedisService",
    "LogContext",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    "CircuitBreakerError",
    "ConfigurationError",
    "ErrorSeverity",
    "MathboardInfrastructureException",
    "RedisConnectionError",
]
