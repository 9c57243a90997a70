"""
Database Retry Policy

Purpose
-------
Retry transient database failures with exponential backoff and jitter.
Used for idempotent units of work only (a whole partition replacement,
a health probe); the caller owns the transaction inside the operation.

Retry Classification
--------------------
- Retriable: OperationalError, and DBAPIError with an invalidated connection
- Non-retriable: everything else (IntegrityError, logic errors)

Backoff Strategy
----------------
min(initial * 2^(attempt-1), max) + random(0, jitter)

Configuration
-------------
- DATABASE_RETRY_MAX_ATTEMPTS (default: 3)
- DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 50)
- DATABASE_RETRY_MAX_BACKOFF_MS (default: 1000)
- DATABASE_RETRY_JITTER_MS (default: 50)

Retry Patterns
--------------
**Good** (retry the operation that opens the transaction):

```python
async def operation():
    async with DatabaseService.get_transaction() as session:
        ...
await retry_policy.execute(operation, operation_name="snapshot.replace_partition")
```

**Bad** (retry inside an open transaction):

```python
async with DatabaseService.get_transaction() as session:
    await retry_policy.execute(some_db_work, ...)
```
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from mathboard.core.config.config import Config
from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class DatabaseRetryConfig:
    max_attempts: int = 3
    initial_backoff_ms: int = 50
    max_backoff_ms: int = 1000
    jitter_ms: int = 50

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=int(getattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 3)),
            initial_backoff_ms=int(getattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 50)),
            max_backoff_ms=int(getattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 1000)),
            jitter_ms=int(getattr(Config, "DATABASE_RETRY_JITTER_MS", 50)),
        )


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Usage
    -----
    >>> retry_policy = DatabaseRetryPolicy.from_config()
    >>> rows = await retry_policy.execute(
    ...     lambda: repository.replace_partition(key, rows),
    ...     operation_name="snapshot.replace_partition",
    ...     context={"difficulty": 1, "region": "asia"},
    ... )
    """

    def __init__(self, config: Optional[DatabaseRetryConfig] = None) -> None:
        self._config = config or DatabaseRetryConfig()

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @staticmethod
    def is_retriable(exc: BaseException) -> bool:
        if isinstance(exc, IntegrityError):
            return False
        if isinstance(exc, OperationalError):
            return True
        return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)

    def _compute_backoff_ms(self, attempt: int) -> int:
        exponent = max(attempt - 1, 0)
        capped = min(self._config.initial_backoff_ms * (2**exponent), self._config.max_backoff_ms)
        jitter = random.randint(0, self._config.jitter_ms) if self._config.jitter_ms > 0 else 0
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute `operation`, retrying retriable exceptions.

        Raises
        ------
        BaseException
            The last exception once attempts are exhausted, or a
            non-retriable exception immediately.
        """
        ctx = context or {}
        max_attempts = max(1, self._config.max_attempts)

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                will_retry = self.is_retriable(exc) and attempt < max_attempts

                if not will_retry:
                    logger.error(
                        "Database operation failed; giving up",
                        extra={
                            "operation_name": operation_name,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "retriable": self.is_retriable(exc),
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                            **ctx,
                        },
                    )
                    raise

                backoff_ms = self._compute_backoff_ms(attempt)
                logger.warning(
                    "Transient database failure; retrying",
                    extra={
                        "operation_name": operation_name,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "backoff_ms": backoff_ms,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        **ctx,
                    },
                )
                await asyncio.sleep(backoff_ms / 1000.0)

        raise RuntimeError(f"Retry loop for {operation_name} ran zero attempts")
