"""
Fail-fast guard shared by the database and Redis layers.

CLOSED counts consecutive failures and opens at `failure_threshold`.
OPEN rejects everything until `recovery_timeout` seconds have passed, then
lets probes through as HALF_OPEN. In HALF_OPEN any failure reopens the
circuit and `success_threshold` successes close it.

The breaker never calls the backend itself; callers ask `allow_request()`
and report the outcome.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 1,
        half_open_max_calls: Optional[int] = None,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.half_open_max_calls = half_open_max_calls

        self._state = CircuitState.CLOSED
        self._lock = asyncio.Lock()
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._half_open_calls = 0
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[float] = None
        self._total_failures = 0
        self._rejected = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def retry_after(self) -> float:
        """Seconds until an OPEN circuit will admit a probe; 0 otherwise."""
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (time.monotonic() - self._opened_at))

    async def allow_request(self) -> bool:
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if self.retry_after() > 0:
                    self._rejected += 1
                    return False
                self._move_to(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN and self.half_open_max_calls is not None:
                if self._half_open_calls >= self.half_open_max_calls:
                    self._rejected += 1
                    return False
                self._half_open_calls += 1
            return True

    async def record_success(self) -> None:
        async with self._lock:
            self._consecutive_failures = 0
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.success_threshold:
                    self._move_to(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._consecutive_failures += 1
            self._total_failures += 1
            self._last_failure_at = time.time()
            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._move_to(CircuitState.OPEN)

    async def reset(self) -> None:
        async with self._lock:
            self._move_to(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._last_failure_at = None

    def _move_to(self, state: CircuitState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self._half_open_successes = 0
        self._half_open_calls = 0
        self._opened_at = time.monotonic() if state is CircuitState.OPEN else None

        level = logger.warning if state is CircuitState.OPEN else logger.info
        level(
            f"{self.name} circuit {previous.value} -> {state.value}",
            extra={
                "circuit": self.name,
                "consecutive_failures": self._consecutive_failures,
                "recovery_timeout_seconds": self.recovery_timeout,
            },
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "circuit_state": self._state.value,
            "failure_count": self._consecutive_failures,
            "total_failures": self._total_failures,
            "rejected_requests": self._rejected,
            "last_failure_time": self._last_failure_at,
            "time_until_half_open": self.retry_after() if self._state is CircuitState.OPEN else None,
        }
