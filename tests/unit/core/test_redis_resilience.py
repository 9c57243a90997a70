"""
Unit Tests for RedisResilience
==============================

Test Coverage
-------------
- Transient errors retried up to max_attempts, then re-raised
- Non-retryable errors raised immediately
- Circuit opens after the failure threshold and rejects calls
- HALF_OPEN recovery closes the circuit after enough successes
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnError
from redis.exceptions import ResponseError

from mathboard.core.redis.resilience import CircuitBreakerOpenError, CircuitState, RedisResilience


def _resilience(**overrides):
    params = dict(
        failure_threshold=3,
        success_threshold=1,
        timeout_seconds=60,
        max_attempts=3,
        initial_delay=0.0,
        max_delay=0.0,
        jitter=False,
    )
    params.update(overrides)
    return RedisResilience(**params)


@pytest.mark.unit
class TestRetry:
    async def test_recovers_after_transient_failure(self, mocker):
        operation = mocker.AsyncMock(side_effect=[RedisConnError("reset"), 7])

        result = await _resilience().execute(operation, "zcard")

        assert result == 7
        assert operation.await_count == 2

    async def test_gives_up_after_max_attempts(self, mocker):
        operation = mocker.AsyncMock(side_effect=RedisConnError("down"))

        with pytest.raises(RedisConnError):
            await _resilience(failure_threshold=10).execute(operation, "zadd")

        assert operation.await_count == 3

    async def test_per_call_attempt_override(self, mocker):
        operation = mocker.AsyncMock(side_effect=RedisConnError("down"))

        with pytest.raises(RedisConnError):
            await _resilience(failure_threshold=10).execute(operation, "zadd", max_attempts=1)

        assert operation.await_count == 1

    async def test_non_retryable_error_raised_immediately(self, mocker):
        operation = mocker.AsyncMock(side_effect=ResponseError("WRONGTYPE"))

        with pytest.raises(ResponseError):
            await _resilience().execute(operation, "zadd")

        assert operation.await_count == 1


@pytest.mark.unit
class TestCircuitBreaker:
    async def test_opens_after_threshold(self, mocker):
        resilience = _resilience()
        failing = mocker.AsyncMock(side_effect=RedisConnError("down"))

        with pytest.raises(RedisConnError):
            await resilience.execute(failing, "zadd")

        assert resilience.state is CircuitState.OPEN
        assert resilience.is_open is True

        untouched = mocker.AsyncMock(return_value=1)
        with pytest.raises(CircuitBreakerOpenError):
            await resilience.execute(untouched, "zcard")
        untouched.assert_not_awaited()

    async def test_half_open_success_closes_circuit(self, mocker):
        resilience = _resilience(timeout_seconds=0)
        with pytest.raises(RedisConnError):
            await resilience.execute(mocker.AsyncMock(side_effect=RedisConnError("down")), "zadd")

        result = await resilience.execute(mocker.AsyncMock(return_value="ok"), "zcard")

        assert result == "ok"
        assert resilience.state is CircuitState.CLOSED

    async def test_reset(self, mocker):
        resilience = _resilience()
        with pytest.raises(RedisConnError):
            await resilience.execute(mocker.AsyncMock(side_effect=RedisConnError("down")), "zadd")

        await resilience.reset()

        status = resilience.get_status()
        assert status["circuit_state"] == "CLOSED"
        assert status["failure_count"] == 0
