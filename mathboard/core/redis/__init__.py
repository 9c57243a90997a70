from mathboard.core.redis.resilience import CircuitBreakerOpenError, CircuitState, RedisResilience
from mathboard.core.redis.service import RedisService

__all__ = [
    "CircuitBreakerOpenError",
    "CircuitState",
    "RedisResilience",
    "RedisService",
]
