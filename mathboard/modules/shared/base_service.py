"""
Base Service Foundation

Purpose
-------
Foundational class for Mathboard domain services. Services implement
business logic, delegate persistence to repositories and stores, and emit
domain events.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- Event emission helpers
- Validation helpers raising domain exceptions

What this class does NOT do:
- Manage database transactions (DatabaseService does)
- Handle Redis connections (RedisService does)

Usage
-----
    class LeaderboardService(BaseService):
        def __init__(self, store, repository, config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)
            self.store = store
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from mathboard.core.exceptions import ConfigurationError, ErrorSeverity
from mathboard.modules.shared.exceptions import ValidationError, get_error_severity, is_transient_error

if TYPE_CHECKING:
    from logging import Logger

    from mathboard.core.config.manager import ConfigManager
    from mathboard.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Application configuration manager (class or instance
            exposing `get(key, default)`)
        event_bus: Event bus for cross-module communication, or None to
            disable event emission
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: type[ConfigManager] | ConfigManager,
        event_bus: Optional[EventBus],
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Safely retrieve configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish a domain event; listener failures are isolated by the bus."""
        if self._events is None:
            return
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        """Log at the exception's severity; WARNING and below never page."""
        severity = get_error_severity(error)
        level = logging.ERROR if severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL) else logging.WARNING
        self.log.log(
            level,
            f"Service error during {operation}: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error": str(error),
                "retryable": is_transient_error(error),
                **context,
            },
        )

    def validate_positive_int(self, value: int, name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(name, f"{name} must be a positive integer, got {value}")
