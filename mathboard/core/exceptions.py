"""
Infrastructure errors: storage backends, configuration, circuit breakers.

Each error knows how loudly it should be logged (`severity`) and whether
the caller may simply try again (`is_retryable`). Domain errors live in
`mathboard.modules.shared.exceptions` and build on the same two fields.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class MathboardInfrastructureException(Exception):
    """Root of the infrastructure hierarchy; subclasses pick the defaults."""

    severity: ErrorSeverity = ErrorSeverity.ERROR
    is_retryable: bool = False
    error_code: str = "INFRASTRUCTURE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "retryable": self.is_retryable,
            **self.details,
        }


class ConfigurationError(MathboardInfrastructureException):
    """A configuration key is missing or holds an unusable value."""

    severity = ErrorSeverity.CRITICAL
    error_code = "CONFIG_ERROR"

    def __init__(self, config_key: str, message: str) -> None:
        super().__init__(f"{config_key}: {message}", config_key=config_key)
        self.config_key = config_key


class RedisConnectionError(MathboardInfrastructureException):
    """A ranking-store command failed at the Redis layer."""

    is_retryable = True
    error_code = "REDIS_ERROR"

    def __init__(self, operation: str, original_error: BaseException) -> None:
        super().__init__(
            f"Redis {operation} failed: {type(original_error).__name__}: {original_error}",
            operation=operation,
        )
        self.operation = operation
        self.original_error = original_error


class CircuitBreakerError(MathboardInfrastructureException):
    """A breaker is open; the call was rejected without touching the backend."""

    severity = ErrorSeverity.WARNING
    is_retryable = True
    error_code = "CIRCUIT_BREAKER_OPEN"

    def __init__(self, service: str, failure_count: int, retry_after: float) -> None:
        super().__init__(
            f"{service} circuit open after {failure_count} failures; retry in {retry_after:.1f}s",
            service=service,
            failure_count=failure_count,
            retry_after=retry_after,
        )
        self.service = service
        self.failure_count = failure_count
        self.retry_after = retry_after


def is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, MathboardInfrastructureException) and exc.is_retryable


def get_error_severity(exc: BaseException, default: Optional[ErrorSeverity] = None) -> ErrorSeverity:
    if isinstance(exc, MathboardInfrastructureException):
        return exc.severity
    return default or ErrorSeverity.ERROR
