"""
Unit Tests for CircuitBreaker
=============================

Test Coverage
-------------
- Opens at the failure threshold and rejects while the timeout runs
- HALF_OPEN probe limit and success threshold
- Snapshot and reset
"""

import pytest

from mathboard.core.circuit_breaker import CircuitBreaker, CircuitState


async def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        assert await breaker.allow_request() is True
        await breaker.record_failure()


@pytest.mark.unit
class TestCircuitBreaker:
    async def test_opens_at_threshold_and_rejects(self):
        breaker = CircuitBreaker("database", failure_threshold=2, recovery_timeout=60)

        await _trip(breaker)

        assert breaker.state is CircuitState.OPEN
        assert await breaker.allow_request() is False
        assert breaker.retry_after() > 0
        assert breaker.snapshot()["rejected_requests"] == 1

    async def test_success_resets_failure_run(self):
        breaker = CircuitBreaker("database", failure_threshold=2)

        await breaker.record_failure()
        await breaker.record_success()
        await breaker.record_failure()

        assert breaker.state is CircuitState.CLOSED

    async def test_half_open_probe_limit(self):
        breaker = CircuitBreaker("database", failure_threshold=1, recovery_timeout=0, half_open_max_calls=1)
        await _trip(breaker)

        assert await breaker.allow_request() is True
        assert breaker.state is CircuitState.HALF_OPEN
        assert await breaker.allow_request() is False

        await breaker.record_success()
        assert breaker.state is CircuitState.CLOSED

    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("redis", failure_threshold=1, recovery_timeout=0, success_threshold=2)
        await _trip(breaker)
        await breaker.allow_request()

        await breaker.record_failure()

        assert breaker.state is CircuitState.OPEN

    async def test_reset(self):
        breaker = CircuitBreaker("redis", failure_threshold=1)
        await _trip(breaker)

        await breaker.reset()

        snapshot = breaker.snapshot()
        assert snapshot["circuit_state"] == "CLOSED"
        assert snapshot["failure_count"] == 0
        assert snapshot["total_failures"] == 1
