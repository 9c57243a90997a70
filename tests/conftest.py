"""
Pytest Configuration and Fixtures for Mathboard Tests
=====================================================

Purpose
-------
Centralized fixtures for the Mathboard test suite: an in-memory double of
the RedisService surface, a SQLite-backed DatabaseService, factories for
statistics rows, and testcontainers for the integration suite.

Architecture Notes
------------------
- Unit tests run against `InMemoryRedis` (same async surface as
  RedisService, MULTI pipelines applied atomically) and aiosqlite
- Integration tests use testcontainers (real PostgreSQL / Redis) and are
  marked `integration`; they are deselected by default
- ConfigManager is a process-wide singleton: every test starts from the
  shipped YAML defaults and drops its overrides afterwards
"""

from __future__ import annotations

import fnmatch
import math
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnError

from mathboard.core.config.config import Config
from mathboard.core.config.manager import ConfigManager
from mathboard.core.database.service import DatabaseService
from mathboard.core.logging.logger import get_logger
from mathboard.database.models.statistics import PlayerStatistics

logger = get_logger(__name__)

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ.setdefault("ENVIRONMENT", "testing")
    os.environ.setdefault("LOG_LEVEL", "DEBUG")


@pytest.fixture(autouse=True)
def reset_config_manager() -> Generator[None, None, None]:
    """Fresh YAML defaults for every test; overrides never leak."""
    ConfigManager.clear_cache()
    ConfigManager._bootstrap(Config.CONFIG_DIR)
    yield
    ConfigManager.clear_cache()


# ============================================================================
# IN-MEMORY REDIS
# ============================================================================


def _parse_bound(value: Any) -> Tuple[float, bool]:
    """Redis score bound -> (value, exclusive)."""
    if isinstance(value, (int, float)):
        return float(value), False
    text = str(value)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    if text in ("+inf", "inf"):
        return math.inf, exclusive
    if text == "-inf":
        return -math.inf, exclusive
    return float(text), exclusive


def _in_range(score: float, low: Tuple[float, bool], high: Tuple[float, bool]) -> bool:
    low_value, low_exclusive = low
    high_value, high_exclusive = high
    above = score > low_value if low_exclusive else score >= low_value
    below = score < high_value if high_exclusive else score <= high_value
    return above and below


class _InMemoryPipeline:
    """Queues commands; `InMemoryRedis.pipeline` applies them in order."""

    def __init__(self) -> None:
        self.commands: List[Tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str) -> Callable[..., None]:
        def _queue(*args: Any, **kwargs: Any) -> None:
            self.commands.append((name, args, kwargs))

        return _queue


class InMemoryRedis:
    """
    Test double exposing the RedisService classmethod surface.

    Sorted sets are dicts of member -> score, hashes are dicts of str -> str
    (decode_responses semantics). Set `fail_with` to make every call raise.
    """

    def __init__(self) -> None:
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_with: Optional[Exception] = None
        self.pipelines: List[Tuple[str, bool, List[str]]] = []

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def fail(self, message: str = "connection refused") -> None:
        self.fail_with = RedisConnError(message)

    def recover(self) -> None:
        self.fail_with = None

    def keys(self) -> List[str]:
        return sorted(set(self.zsets) | set(self.hashes))

    # ---- sync primitives shared by direct calls and pipelines -------------

    def _zadd(self, key: str, mapping: Dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        for member, score in mapping.items():
            zset[str(member)] = float(score)
        return added

    def _zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if zset.pop(str(member), None) is not None:
                removed += 1
        if key in self.zsets and not zset:
            del self.zsets[key]
        return removed

    def _zscore(self, key: str, member: str) -> Optional[float]:
        return self.zsets.get(key, {}).get(str(member))

    def _zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    def _ordered(self, key: str) -> List[Tuple[str, float]]:
        # ZREVRANGE: score desc, equal scores in reverse lexicographic order
        items = self.zsets.get(key, {}).items()
        return sorted(items, key=lambda item: (item[1], item[0]), reverse=True)

    def _hset(self, key: str, mapping: Dict[str, Any]) -> int:
        target = self.hashes.setdefault(key, {})
        added = sum(1 for field in mapping if field not in target)
        target.update({str(field): str(value) for field, value in mapping.items()})
        return added

    def _hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.hashes.get(key, {}))

    def _expire(self, key: str, ttl_seconds: int) -> bool:
        if key not in self.hashes and key not in self.zsets:
            return False
        self.ttls[key] = int(ttl_seconds)
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            found = key in self.zsets or key in self.hashes
            self.zsets.pop(key, None)
            self.hashes.pop(key, None)
            self.ttls.pop(key, None)
            removed += int(found)
        return removed

    # ---- RedisService surface ---------------------------------------------

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._check()
        return self._zadd(key, mapping)

    async def zrevrange(self, key: str, start: int, end: int) -> List[Tuple[str, float]]:
        self._check()
        ordered = self._ordered(key)
        stop = None if end == -1 else end + 1
        return ordered[start:stop]

    async def zrevrangebyscore(
        self, key: str, max_score: Any, min_score: Any, limit: Optional[int] = None
    ) -> List[Tuple[str, float]]:
        self._check()
        low, high = _parse_bound(min_score), _parse_bound(max_score)
        matched = [(member, score) for member, score in self._ordered(key) if _in_range(score, low, high)]
        return matched if limit is None else matched[:limit]

    async def zscore(self, key: str, member: str) -> Optional[float]:
        self._check()
        return self._zscore(key, member)

    async def zcount(self, key: str, min_score: Any, max_score: Any) -> int:
        self._check()
        low, high = _parse_bound(min_score), _parse_bound(max_score)
        return sum(1 for score in self.zsets.get(key, {}).values() if _in_range(score, low, high))

    async def zcard(self, key: str) -> int:
        self._check()
        return self._zcard(key)

    async def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        self._check()
        return self._hset(key, mapping)

    async def hgetall(self, key: str) -> Dict[str, str]:
        self._check()
        return self._hgetall(key)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        self._check()
        return self._expire(key, ttl_seconds)

    async def ttl(self, key: str) -> int:
        self._check()
        return self.ttls.get(key, -1)

    async def delete(self, *keys: str) -> int:
        self._check()
        return self._delete(*keys)

    async def scan_keys(self, pattern: str) -> List[str]:
        self._check()
        return [key for key in self.keys() if fnmatch.fnmatchcase(key, pattern)]

    async def delete_pattern(self, pattern: str) -> int:
        keys = await self.scan_keys(pattern)
        return self._delete(*keys)

    async def pipeline(
        self,
        build: Callable[[Any], None],
        operation_name: str,
        transaction: bool = True,
    ) -> List[Any]:
        self._check()
        pipe = _InMemoryPipeline()
        build(pipe)
        self.pipelines.append((operation_name, transaction, [name for name, _, _ in pipe.commands]))

        results: List[Any] = []
        for name, args, kwargs in pipe.commands:
            if name == "hset":
                results.append(self._hset(args[0], kwargs.get("mapping") or args[1]))
            else:
                results.append(getattr(self, f"_{name}")(*args, **kwargs))
        return results

    async def health_check(self) -> bool:
        return self.fail_with is None


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path) -> Any:
    """
    DatabaseService bound to a throwaway SQLite file with the full schema.

    Yields the DatabaseService class itself (it is a classmethod singleton).
    """
    await DatabaseService.shutdown()
    await DatabaseService.initialize(f"sqlite+aiosqlite:///{tmp_path / 'mathboard.db'}")
    await DatabaseService.create_schema()
    yield DatabaseService
    await DatabaseService.shutdown()


@pytest.fixture
def make_statistics(database) -> Callable[..., Any]:
    """
    Factory inserting PlayerStatistics rows.

    Usage:
        stats = await make_statistics(player_id=1, difficulty=1, best_score=300)
    """

    async def _make(
        player_id: int,
        difficulty: int = 1,
        best_score: int = 0,
        best_score_time: Optional[float] = None,
        games_played: int = 1,
    ) -> PlayerStatistics:
        async with database.get_transaction() as session:
            record = PlayerStatistics(
                player_id=player_id,
                difficulty_level=difficulty,
                games_played=games_played,
                best_score=best_score,
                best_score_time=best_score_time,
                best_score_achieved_at=datetime.now(timezone.utc) if best_score else None,
                total_score=best_score * games_played,
            )
            session.add(record)
            await session.flush()
            return record

    return _make


# ============================================================================
# EVENT CAPTURE
# ============================================================================


class RecordingEventBus:
    """Minimal publish() double that keeps every published event."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, event_name: str, data: Dict[str, Any]) -> List[Any]:
        self.events.append((event_name, dict(data)))
        return []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def event_recorder() -> RecordingEventBus:
    return RecordingEventBus()
