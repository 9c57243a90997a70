"""
Async Redis access for the ranking store.

One pooled redis-py client per process (`decode_responses=True`, so every
member and hash value comes back as `str`). Each command method is a thin
wrapper that routes the call through RedisResilience, which owns retries
and the circuit breaker; the client itself is built with
`retry_on_timeout=False` so the two never stack.

Only the commands the leaderboard needs are exposed: sorted sets, hashes,
TTLs, SCAN-based pattern deletes and MULTI/EXEC pipelines. Key naming and
ranking rules belong to RankingStore.

Settings: REDIS_URL, REDIS_PASSWORD, REDIS_SOCKET_TIMEOUT and
REDIS_MAX_CONNECTIONS from Config; `redis.scan_batch_size` from ConfigManager.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from redis.asyncio.client import Pipeline, Redis as AsyncRedis
from redis.exceptions import RedisError

from mathboard.core.config.config import Config
from mathboard.core.config.manager import ConfigManager
from mathboard.core.logging.logger import get_logger
from mathboard.core.redis.resilience import RedisResilience

logger = get_logger(__name__)

T = TypeVar("T")

ScoredMembers = List[Tuple[str, float]]


def _scheme(url: str) -> str:
    return url.partition("://")[0] or "unknown"


class RedisService:
    """Classmethod-only facade; RankingStore takes the class itself (or a test double)."""

    _client: Optional[AsyncRedis] = None
    _resilience: Optional[RedisResilience] = None
    _lock: asyncio.Lock = asyncio.Lock()
    _healthy: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """Connect and PING once; raises RuntimeError when the server is unreachable."""
        async with cls._lock:
            if cls._client is not None:
                return

            url = url or Config.REDIS_URL
            started = time.monotonic()
            candidate = AsyncRedis.from_url(
                url,
                password=Config.REDIS_PASSWORD,
                decode_responses=True,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=Config.REDIS_SOCKET_TIMEOUT,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=False,
                health_check_interval=30,
            )
            try:
                await candidate.ping()
            except (RedisError, OSError) as exc:
                await candidate.aclose()
                logger.critical(
                    f"Redis unreachable at startup: {exc}",
                    extra={"url_scheme": _scheme(url), "error_type": type(exc).__name__},
                )
                raise RuntimeError(f"Redis unreachable: {exc}") from exc

            cls._client = candidate
            cls._resilience = RedisResilience()
            cls._healthy = True
            logger.info(
                "Redis connected",
                extra={
                    "url_scheme": _scheme(url),
                    "pool_size": Config.REDIS_MAX_CONNECTIONS,
                    "connect_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        client, cls._client = cls._client, None
        cls._resilience = None
        cls._healthy = False
        if client is not None:
            await client.aclose()
            logger.info("Redis connection pool closed")

    @classmethod
    async def health_check(cls) -> bool:
        """PING without retries; never raises."""
        if cls._client is None:
            cls._healthy = False
            return False
        try:
            cls._healthy = bool(await cls._client.ping())
        except (RedisError, OSError) as exc:
            cls._healthy = False
            logger.warning(f"Redis PING failed: {exc}", extra={"error_type": type(exc).__name__})
        return cls._healthy

    @classmethod
    def is_healthy(cls) -> bool:
        return cls._healthy

    @classmethod
    def get_status(cls) -> Dict[str, Any]:
        return {
            "connected": cls._client is not None,
            "healthy": cls._healthy,
            "resilience": cls._resilience.get_status() if cls._resilience is not None else None,
        }

    @classmethod
    def client(cls) -> AsyncRedis:
        if cls._client is None:
            raise RuntimeError("RedisService.initialize() has not been awaited")
        return cls._client

    @classmethod
    async def _run(cls, command: str, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        if cls._resilience is None:
            raise RuntimeError("RedisService.initialize() has not been awaited")
        started = time.monotonic()
        try:
            return await cls._resilience.execute(operation, f"{command} {key}")
        finally:
            logger.debug(
                f"Redis {command}",
                extra={"key": key, "latency_ms": round((time.monotonic() - started) * 1000, 2)},
            )

    # ═══════════════════════════════════════════════════════════════════════
    # SORTED SETS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def zadd(cls, key: str, mapping: Mapping[str, float]) -> int:
        return int(await cls._run("ZADD", key, lambda: cls.client().zadd(key, dict(mapping))))

    @classmethod
    async def zrevrange(cls, key: str, start: int, end: int) -> ScoredMembers:
        """Members by descending score, inclusive index range, with scores."""
        result = await cls._run(
            "ZREVRANGE",
            key,
            lambda: cls.client().zrevrange(key, start, end, withscores=True),
        )
        return [(member, float(score)) for member, score in result]

    @classmethod
    async def zrevrangebyscore(
        cls,
        key: str,
        max_score: float,
        min_score: float,
        limit: Optional[int] = None,
    ) -> ScoredMembers:
        """Members in a score range, highest first; `limit` maps to LIMIT 0 n."""
        page = {"start": 0, "num": limit} if limit is not None else {}
        result = await cls._run(
            "ZREVRANGEBYSCORE",
            key,
            lambda: cls.client().zrevrangebyscore(key, max_score, min_score, withscores=True, **page),
        )
        return [(member, float(score)) for member, score in result]

    @classmethod
    async def zscore(cls, key: str, member: str) -> Optional[float]:
        result = await cls._run("ZSCORE", key, lambda: cls.client().zscore(key, member))
        return float(result) if result is not None else None

    @classmethod
    async def zcount(cls, key: str, min_score: Any, max_score: Any) -> int:
        """Count members in a score range; bounds accept "(" exclusive syntax."""
        return int(
            await cls._run("ZCOUNT", key, lambda: cls.client().zcount(key, min_score, max_score))
        )

    @classmethod
    async def zcard(cls, key: str) -> int:
        return int(await cls._run("ZCARD", key, lambda: cls.client().zcard(key)))

    # ═══════════════════════════════════════════════════════════════════════
    # HASHES & KEYS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def hset(cls, key: str, mapping: Mapping[str, Any]) -> int:
        return int(await cls._run("HSET", key, lambda: cls.client().hset(key, mapping=dict(mapping))))

    @classmethod
    async def hgetall(cls, key: str) -> Dict[str, str]:
        return dict(await cls._run("HGETALL", key, lambda: cls.client().hgetall(key)))

    @classmethod
    async def expire(cls, key: str, ttl_seconds: int) -> bool:
        return bool(await cls._run("EXPIRE", key, lambda: cls.client().expire(key, ttl_seconds)))

    @classmethod
    async def ttl(cls, key: str) -> int:
        return int(await cls._run("TTL", key, lambda: cls.client().ttl(key)))

    @classmethod
    async def delete(cls, *keys: str) -> int:
        if not keys:
            return 0
        return int(await cls._run("DEL", keys[0], lambda: cls.client().delete(*keys)))

    @classmethod
    async def scan_keys(cls, pattern: str) -> List[str]:
        """Collect keys matching `pattern` with SCAN (non-blocking for the server)."""
        batch_size = int(ConfigManager.get("redis.scan_batch_size", 500))

        async def _scan() -> List[str]:
            return [key async for key in cls.client().scan_iter(match=pattern, count=batch_size)]

        return await cls._run("SCAN", pattern, _scan)

    @classmethod
    async def delete_pattern(cls, pattern: str) -> int:
        """Delete every key matching `pattern`; returns the number removed."""
        keys = await cls.scan_keys(pattern)
        deleted = 0
        batch_size = int(ConfigManager.get("redis.scan_batch_size", 500))
        for offset in range(0, len(keys), batch_size):
            deleted += await cls.delete(*keys[offset : offset + batch_size])

        logger.info(
            "Redis keys deleted by pattern",
            extra={"pattern": pattern, "matched": len(keys), "deleted": deleted},
        )
        return deleted

    # ═══════════════════════════════════════════════════════════════════════
    # PIPELINES
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    async def pipeline(
        cls,
        build: Callable[[Pipeline], None],
        operation_name: str,
        transaction: bool = True,
    ) -> List[Any]:
        """
        Queue commands via `build(pipe)` and execute them in one round trip.

        With `transaction=True` the batch runs inside MULTI/EXEC, so either
        every queued write lands or none does.
        """

        async def _execute() -> List[Any]:
            async with cls.client().pipeline(transaction=transaction) as pipe:
                build(pipe)
                return await pipe.execute()

        return await cls._run("PIPELINE", operation_name, _execute)
