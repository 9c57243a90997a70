"""
Retry and circuit breaking for Redis commands.

Every command the ranking store sends goes through `RedisResilience.execute`.
Connection-level failures (resets, refused connections, socket timeouts)
are retried with capped exponential backoff; anything else, such as a
WRONGTYPE ResponseError, is raised on the first attempt. Each failed attempt
counts against the circuit, so a dead server trips it quickly and later
callers fail fast with CircuitBreakerOpenError instead of waiting on sockets.

Tunables (config/infrastructure.yaml, `redis.resilience.*`):

    circuit.failure_threshold      5
    circuit.success_threshold      2
    circuit.timeout_seconds        60
    retry.max_attempts             3
    retry.initial_delay_seconds    0.1
    retry.max_delay_seconds        2.0
    retry.backoff_multiplier       2.0
    retry.jitter                   true
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from redis.exceptions import ConnectionError as RedisConnError
from redis.exceptions import TimeoutError as RedisTimeoutError

from mathboard.core.circuit_breaker import CircuitBreaker, CircuitState
from mathboard.core.config.manager import ConfigManager
from mathboard.core.exceptions import CircuitBreakerError
from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (RedisConnError, RedisTimeoutError, OSError)

__all__ = ["CircuitBreakerOpenError", "CircuitState", "RedisResilience", "RETRYABLE_ERRORS"]


class CircuitBreakerOpenError(CircuitBreakerError):
    """The Redis circuit is open; the command was not sent."""


def _tunable(key: str, override: Any, default: Any) -> Any:
    if override is not None:
        return override
    value = ConfigManager.get(f"redis.resilience.{key}")
    if value is None or isinstance(value, bool) != isinstance(default, bool):
        return default
    return type(default)(value)


class RedisResilience:
    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        success_threshold: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        backoff_multiplier: Optional[float] = None,
        jitter: Optional[bool] = None,
    ) -> None:
        self._breaker = CircuitBreaker(
            "redis",
            failure_threshold=_tunable("circuit.failure_threshold", failure_threshold, 5),
            success_threshold=_tunable("circuit.success_threshold", success_threshold, 2),
            recovery_timeout=_tunable("circuit.timeout_seconds", timeout_seconds, 60.0),
        )
        self.max_attempts: int = _tunable("retry.max_attempts", max_attempts, 3)
        self.initial_delay: float = _tunable("retry.initial_delay_seconds", initial_delay, 0.1)
        self.max_delay: float = _tunable("retry.max_delay_seconds", max_delay, 2.0)
        self.backoff_multiplier: float = _tunable("retry.backoff_multiplier", backoff_multiplier, 2.0)
        self.jitter: bool = _tunable("retry.jitter", jitter, True)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run `operation` under the breaker, retrying connection-level failures.

        Raises CircuitBreakerOpenError without calling `operation` when the
        circuit is open; otherwise re-raises the last error once attempts
        run out.
        """
        if not await self._breaker.allow_request():
            raise CircuitBreakerOpenError("redis", self._breaker.consecutive_failures, self._breaker.retry_after())

        attempts = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except RETRYABLE_ERRORS as exc:
                await self._breaker.record_failure()
                if attempt >= attempts:
                    logger.error(
                        f"Redis {operation_name} gave up after {attempt} attempt(s)",
                        extra={"operation": operation_name, "error_type": type(exc).__name__, "error": str(exc)},
                    )
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"Redis {operation_name} failed; retry {attempt + 1}/{attempts} in {delay:.3f}s",
                    extra={"operation": operation_name, "error_type": type(exc).__name__},
                )
                await asyncio.sleep(delay)
            except Exception:
                await self._breaker.record_failure()
                raise
            else:
                await self._breaker.record_success()
                return result

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1`; +/-10% when jittered."""
        delay = min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.9, 1.1)
        return delay

    async def reset(self) -> None:
        await self._breaker.reset()

    @property
    def state(self) -> CircuitState:
        return self._breaker.state

    @property
    def is_open(self) -> bool:
        return self._breaker.state is CircuitState.OPEN

    def get_status(self) -> Dict[str, Any]:
        return {
            **self._breaker.snapshot(),
            "circuit_failure_threshold": self._breaker.failure_threshold,
            "circuit_timeout_seconds": self._breaker.recovery_timeout,
            "retry_max_attempts": self.max_attempts,
        }
