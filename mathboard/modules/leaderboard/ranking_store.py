"""
RankingStore: live leaderboards on Redis sorted sets.

Purpose
-------
Answer "who is in the top N" and "what is my rank" at low latency for every
(scope, difficulty, period) dimension, and accept score updates from the
game-completion flow.

Responsibilities
----------------
- Maintain four score sets per update (global/region x alltime/monthly) and
  four parallel elapsed-time sets, plus a per-(player, difficulty) attribute
  hash with a one-year TTL
- Assemble ranked entries with the tie-break rule: descending score, then
  ascending elapsed time
- Report per-dimension cardinalities
- Bulk-clear key families with SCAN-based deletes

Non-Responsibilities
--------------------
- Durable storage (SnapshotRepository)
- Rewards or rollover orchestration (PersistenceSynchronizer)

Key Layout
----------
- leaderboard:{scope}:{difficulty}:{period}        score set
- leaderboard:{scope}:{difficulty}:{period}:time   elapsed-time set
- user:{player_id}:{difficulty}                    attribute hash

Architecture Notes
------------------
- Sorted sets order by score only, so ties are resolved client side.
  Members tied with the N-th score are fetched as well, which keeps a faster
  tied player from being truncated away; that fetch is capped at
  `leaderboard.max_tie_candidates` members.
- All writes of one update go through a single MULTI/EXEC pipeline.
- Redis failures surface as `RedisConnectionError`; callers decide whether
  to degrade (reads fall back to snapshots) or report.

Configuration Keys
------------------
- leaderboard.difficulty_levels
- leaderboard.regions
- leaderboard.attribute_ttl_seconds
- leaderboard.max_tie_candidates
- rollover.timezone (month label of live monthly entries)
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from redis.exceptions import RedisError

from mathboard.core.config.config import Config
from mathboard.core.config.manager import ConfigManager
from mathboard.core.exceptions import RedisConnectionError
from mathboard.core.logging.logger import get_logger
from mathboard.core.redis.service import RedisService
from mathboard.database.models.enums import LeaderboardType
from mathboard.modules.leaderboard.constants import (
    DEFAULT_ATTRIBUTE_TTL_SECONDS,
    DEFAULT_DIFFICULTY_LEVELS,
    DEFAULT_MAX_TIE_CANDIDATES,
    DEFAULT_REGIONS,
    GLOBAL_SCOPE,
)
from mathboard.modules.leaderboard.models import PlayerAttributes, RankedEntry
from mathboard.modules.leaderboard.periods import current_month_identifier, resolve_timezone
from mathboard.modules.leaderboard.regions import RegionResolver, country_flag
from mathboard.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

PeriodLike = Union[LeaderboardType, str]

_PERIODS = (LeaderboardType.ALL_TIME, LeaderboardType.MONTHLY)


def _as_period(period: PeriodLike) -> LeaderboardType:
    try:
        return period if isinstance(period, LeaderboardType) else LeaderboardType(period)
    except ValueError as exc:
        raise ValidationError("period", f"Unknown period {period!r}") from exc


def _improves(score: int, elapsed: float, current: Optional[Tuple[float, float]]) -> bool:
    """Higher score wins; an equal score needs a strictly faster time."""
    if current is None:
        return True
    current_score, current_time = current
    return score > current_score or (score == current_score and elapsed < current_time)


class RankingStore:
    """
    Live ranking store over a RedisService-shaped client.

    Parameters
    ----------
    redis:
        `RedisService` (default) or any object with the same async surface.
    resolver:
        Country -> region lookup; defaults to the configured mapping.
    """

    def __init__(
        self,
        redis: Any = RedisService,
        resolver: Optional[RegionResolver] = None,
        config_manager: Any = ConfigManager,
    ) -> None:
        self._redis = redis
        self._resolver = resolver or RegionResolver()
        self._config = config_manager

        self.difficulty_levels: Tuple[int, ...] = tuple(
            int(level)
            for level in self._config.get("leaderboard.difficulty_levels", DEFAULT_DIFFICULTY_LEVELS)
        )
        self.regions: Tuple[str, ...] = tuple(
            self._config.get("leaderboard.regions", DEFAULT_REGIONS)
        )
        self.attribute_ttl_seconds = int(
            self._config.get("leaderboard.attribute_ttl_seconds", DEFAULT_ATTRIBUTE_TTL_SECONDS)
        )
        self.max_tie_candidates = int(
            self._config.get("leaderboard.max_tie_candidates", DEFAULT_MAX_TIE_CANDIDATES)
        )
        self.timezone = resolve_timezone(
            self._config.get("rollover.timezone", Config.LEADERBOARD_TIMEZONE)
        )

    @property
    def resolver(self) -> RegionResolver:
        return self._resolver

    # ═══════════════════════════════════════════════════════════════════════
    # KEY LAYOUT
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def leaderboard_key(scope: str, difficulty: int, period: PeriodLike) -> str:
        return f"leaderboard:{scope}:{difficulty}:{_as_period(period).value}"

    @classmethod
    def time_key(cls, scope: str, difficulty: int, period: PeriodLike) -> str:
        return f"{cls.leaderboard_key(scope, difficulty, period)}:time"

    @staticmethod
    def attributes_key(player_id: Union[int, str], difficulty: int) -> str:
        return f"user:{player_id}:{difficulty}"

    # ═══════════════════════════════════════════════════════════════════════
    # VALIDATION
    # ═══════════════════════════════════════════════════════════════════════

    def _validate_difficulty(self, difficulty: int) -> int:
        if isinstance(difficulty, bool) or not isinstance(difficulty, int):
            raise ValidationError("difficulty", f"Difficulty must be an integer, got {difficulty!r}")
        if difficulty not in self.difficulty_levels:
            raise ValidationError(
                "difficulty",
                f"Difficulty must be one of {list(self.difficulty_levels)}, got {difficulty}",
            )
        return difficulty

    def _validate_scope(self, scope: str) -> str:
        if scope != GLOBAL_SCOPE and scope not in self.regions:
            raise ValidationError("scope", f"Unknown scope {scope!r}")
        return scope

    # ═══════════════════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════════════════

    async def update_score(
        self,
        player_id: int,
        difficulty: int,
        score: int,
        elapsed_time: float,
        attrs: Optional[PlayerAttributes] = None,
        *,
        keep_best: bool = False,
    ) -> bool:
        """
        Record a player's result in all four dimensions of `difficulty`.

        By default the latest result replaces the previous one (ZADD
        semantics). With `keep_best=True` each set is written only when the
        result improves on what that set already holds.

        Without `attrs` the cached attribute hash is reused, so the player
        keeps their region and display fields.

        Returns
        -------
        bool
            True if at least one set was written.

        Raises
        ------
        ValidationError
            On an unknown difficulty, a negative score or a negative time.
        RedisConnectionError
            If Redis is unavailable.
        """
        difficulty = self._validate_difficulty(difficulty)
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ValidationError("score", f"Score must be a non-negative integer, got {score!r}")
        elapsed = float(elapsed_time)
        if math.isnan(elapsed) or elapsed < 0:
            raise ValidationError("elapsed_time", f"Elapsed time must be >= 0, got {elapsed_time!r}")

        member = str(player_id)

        try:
            if attrs is None:
                # Keep what is cached; a player never seen before lands in "others"
                cached = await self._redis.hgetall(self.attributes_key(member, difficulty))
                attrs = self._decode_attributes(cached) if cached else PlayerAttributes()

            region = self._resolver.resolve(attrs.country)
            scopes = (GLOBAL_SCOPE, region)
            dimensions = [(scope, period) for scope in scopes for period in _PERIODS]

            existing, current = await self._read_current(member, difficulty, dimensions, keep_best)

            if keep_best:
                targets = [
                    dim for dim, position in zip(dimensions, current) if _improves(score, elapsed, position)
                ]
            else:
                targets = dimensions

            if not targets:
                logger.debug(
                    "Score not written: no improvement",
                    extra={"player_id": player_id, "difficulty": difficulty, "score": score},
                )
                return False

            previous_region = existing.get("region")
            moved_from = (
                previous_region
                if previous_region and previous_region not in (region, GLOBAL_SCOPE)
                else None
            )

            record_best = not keep_best or (GLOBAL_SCOPE, LeaderboardType.ALL_TIME) in targets
            attributes = self._encode_attributes(
                player_id, attrs, region, score, elapsed, existing, record_best
            )
            attributes_key = self.attributes_key(member, difficulty)
            ttl = self.attribute_ttl_seconds

            def _build(pipe: Any) -> None:
                pipe.hset(attributes_key, mapping=attributes)
                pipe.expire(attributes_key, ttl)
                for scope, period in targets:
                    pipe.zadd(self.leaderboard_key(scope, difficulty, period), {member: score})
                    pipe.zadd(self.time_key(scope, difficulty, period), {member: elapsed})
                if moved_from:
                    for period in _PERIODS:
                        pipe.zrem(self.leaderboard_key(moved_from, difficulty, period), member)
                        pipe.zrem(self.time_key(moved_from, difficulty, period), member)

            await self._redis.pipeline(
                _build,
                operation_name=f"update_score:{member}:{difficulty}",
                transaction=True,
            )
        except RedisError as exc:
            raise RedisConnectionError("update_score", exc) from exc

        logger.info(
            "Score recorded",
            extra={
                "player_id": player_id,
                "difficulty": difficulty,
                "score": score,
                "elapsed_time": elapsed,
                "region": region,
                "dimensions_written": len(targets),
                "moved_from_region": moved_from,
            },
        )
        return True

    async def _read_current(
        self,
        member: str,
        difficulty: int,
        dimensions: Sequence[Tuple[str, LeaderboardType]],
        with_positions: bool,
    ) -> Tuple[Dict[str, str], List[Optional[Tuple[float, float]]]]:
        """Existing attribute hash and, optionally, current (score, time) per dimension."""
        attributes_key = self.attributes_key(member, difficulty)
        if not with_positions:
            return await self._redis.hgetall(attributes_key), []

        def _build(pipe: Any) -> None:
            pipe.hgetall(attributes_key)
            for scope, period in dimensions:
                pipe.zscore(self.leaderboard_key(scope, difficulty, period), member)
                pipe.zscore(self.time_key(scope, difficulty, period), member)

        raw = await self._redis.pipeline(
            _build,
            operation_name=f"read_current:{member}:{difficulty}",
            transaction=False,
        )
        existing = dict(raw[0] or {})
        positions: List[Optional[Tuple[float, float]]] = []
        for index in range(len(dimensions)):
            current_score = raw[1 + index * 2]
            current_time = raw[2 + index * 2]
            if current_score is None:
                positions.append(None)
            else:
                positions.append(
                    (float(current_score), float(current_time or 0.0))
                )
        return existing, positions

    @staticmethod
    def _encode_attributes(
        player_id: int,
        attrs: PlayerAttributes,
        region: str,
        score: int,
        elapsed: float,
        existing: Dict[str, str],
        record_best: bool,
    ) -> Dict[str, Any]:
        # Redis hashes cannot hold None
        encoded: Dict[str, Any] = {
            "id": str(player_id),
            "username": attrs.username or "",
            "full_name": attrs.full_name or "",
            "avatar": attrs.avatar or "",
            "current_level": int(attrs.current_level),
            "country": (attrs.country or "").strip().upper(),
            "region": region,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        if record_best or "best_score" not in existing:
            encoded["best_score"] = score
            encoded["best_time"] = elapsed
        return encoded

    # ═══════════════════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════════════════

    async def get_top_n(
        self,
        scope: str,
        difficulty: int,
        period: PeriodLike,
        n: int,
        *,
        month_identifier: Optional[str] = None,
    ) -> List[RankedEntry]:
        """
        Top `n` entries of one dimension, ranked 1..k (k <= n).

        Ordering is descending score, then ascending elapsed time, then
        player id for a stable result.
        """
        scope = self._validate_scope(scope)
        difficulty = self._validate_difficulty(difficulty)
        period = _as_period(period)
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise ValidationError("n", f"n must be a positive integer, got {n!r}")

        key = self.leaderboard_key(scope, difficulty, period)
        time_key = self.time_key(scope, difficulty, period)

        try:
            head = await self._redis.zrevrange(key, 0, n - 1)
            if not head:
                return []

            candidates: Dict[str, float] = dict(head)
            if len(head) == n:
                cutoff = head[-1][1]
                tied = await self._redis.zrevrangebyscore(
                    key, cutoff, cutoff, limit=self.max_tie_candidates
                )
                if len(tied) >= self.max_tie_candidates:
                    logger.warning(
                        "Tie at the cutoff score hit the candidate cap; order among tied players is partial",
                        extra={"key": key, "cutoff": cutoff, "max_tie_candidates": self.max_tie_candidates},
                    )
                candidates.update(tied)

            members = list(candidates)

            def _build(pipe: Any) -> None:
                for member in members:
                    pipe.zscore(time_key, member)
                    pipe.hgetall(self.attributes_key(member, difficulty))

            raw = await self._redis.pipeline(
                _build,
                operation_name=f"top_n:{key}",
                transaction=False,
            )
        except RedisError as exc:
            raise RedisConnectionError("get_top_n", exc) from exc

        rows = []
        for index, member in enumerate(members):
            elapsed = raw[index * 2]
            attributes = raw[index * 2 + 1] or {}
            rows.append((member, candidates[member], elapsed, attributes))

        rows.sort(key=lambda row: self._sort_key(row[0], row[1], row[2]))

        if period is LeaderboardType.MONTHLY:
            label = month_identifier or current_month_identifier(self.timezone)
        else:
            label = None

        return [
            self._assemble(rank, member, score, elapsed, attributes, label)
            for rank, (member, score, elapsed, attributes) in enumerate(rows[:n], start=1)
        ]

    async def get_player_rank(
        self,
        player_id: int,
        scope: str,
        difficulty: int,
        period: PeriodLike,
    ) -> Optional[int]:
        """1-based rank under the same tie-break as `get_top_n`; None if unranked."""
        scope = self._validate_scope(scope)
        difficulty = self._validate_difficulty(difficulty)
        key = self.leaderboard_key(scope, difficulty, period)
        time_key = self.time_key(scope, difficulty, period)
        member = str(player_id)

        try:
            score = await self._redis.zscore(key, member)
            if score is None:
                return None

            higher = await self._redis.zcount(key, f"({score}", "+inf")
            tied = [candidate for candidate, _ in await self._redis.zrevrangebyscore(key, score, score)]
            if len(tied) <= 1:
                return higher + 1

            def _build(pipe: Any) -> None:
                for candidate in tied:
                    pipe.zscore(time_key, candidate)

            times = await self._redis.pipeline(
                _build,
                operation_name=f"player_rank:{key}",
                transaction=False,
            )
        except RedisError as exc:
            raise RedisConnectionError("get_player_rank", exc) from exc

        by_member = dict(zip(tied, times))
        own = self._sort_key(member, score, by_member.get(member))
        ahead = sum(
            1
            for candidate in tied
            if candidate != member and self._sort_key(candidate, score, by_member[candidate]) < own
        )
        return higher + ahead + 1

    async def get_player_attributes(self, player_id: int, difficulty: int) -> Optional[PlayerAttributes]:
        """Cached display attributes, or None if the hash expired or never existed."""
        try:
            raw = await self._redis.hgetall(self.attributes_key(player_id, difficulty))
        except RedisError as exc:
            raise RedisConnectionError("get_player_attributes", exc) from exc
        if not raw:
            return None
        return self._decode_attributes(raw)

    async def get_stats(self) -> Dict[str, Dict[str, Dict[str, int]]]:
        """
        Cardinality of every configured dimension.

        Returns
        -------
        dict
            ``{"difficulty_1": {"global": {"alltime_players": 10, "monthly_players": 4}, ...}, ...}``
        """
        cells = [(difficulty, scope) for difficulty in self.difficulty_levels for scope in self.regions]

        def _build(pipe: Any) -> None:
            for difficulty, scope in cells:
                pipe.zcard(self.leaderboard_key(scope, difficulty, LeaderboardType.ALL_TIME))
                pipe.zcard(self.leaderboard_key(scope, difficulty, LeaderboardType.MONTHLY))

        try:
            raw = await self._redis.pipeline(_build, operation_name="stats", transaction=False)
        except RedisError as exc:
            raise RedisConnectionError("get_stats", exc) from exc

        stats: Dict[str, Dict[str, Dict[str, int]]] = {}
        for index, (difficulty, scope) in enumerate(cells):
            stats.setdefault(f"difficulty_{difficulty}", {})[scope] = {
                "alltime_players": int(raw[index * 2] or 0),
                "monthly_players": int(raw[index * 2 + 1] or 0),
            }
        return stats

    # ═══════════════════════════════════════════════════════════════════════
    # CLEARING
    # ═══════════════════════════════════════════════════════════════════════

    async def clear(self, pattern: str) -> int:
        """
        Delete every key matching `pattern` and, for score-set patterns, the
        matching time sets.

        Returns
        -------
        int
            Number of keys removed.
        """
        patterns: Iterable[str] = [pattern]
        if pattern.startswith("leaderboard:") and not pattern.endswith((":time", "*")):
            patterns = [pattern, f"{pattern}:time"]

        try:
            removed = 0
            for item in patterns:
                removed += await self._redis.delete_pattern(item)
        except RedisError as exc:
            raise RedisConnectionError("clear", exc) from exc

        logger.info("Ranking keys cleared", extra={"pattern": pattern, "deleted": removed})
        return removed

    async def clear_partition(self, scope: str, difficulty: int, period: PeriodLike) -> int:
        """Delete the score set and the time set of one dimension."""
        try:
            removed = await self._redis.delete(
                self.leaderboard_key(scope, difficulty, period),
                self.time_key(scope, difficulty, period),
            )
        except RedisError as exc:
            raise RedisConnectionError("clear_partition", exc) from exc

        logger.info(
            "Ranking partition cleared",
            extra={
                "scope": scope,
                "difficulty": difficulty,
                "period": _as_period(period).value,
                "deleted": removed,
            },
        )
        return removed

    async def clear_all(self) -> int:
        """Maintenance: drop every leaderboard set and attribute hash."""
        try:
            removed = await self._redis.delete_pattern("leaderboard:*")
            removed += await self._redis.delete_pattern("user:*")
        except RedisError as exc:
            raise RedisConnectionError("clear_all", exc) from exc

        logger.warning("All ranking data cleared", extra={"deleted": removed})
        return removed

    # ═══════════════════════════════════════════════════════════════════════
    # ASSEMBLY HELPERS
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _level(raw: Dict[str, str]) -> int:
        try:
            return int(raw.get("current_level") or 1)
        except ValueError:
            return 1

    @classmethod
    def _decode_attributes(cls, raw: Dict[str, str]) -> PlayerAttributes:
        return PlayerAttributes(
            username=raw.get("username", ""),
            full_name=raw.get("full_name", ""),
            avatar=raw.get("avatar") or None,
            current_level=cls._level(raw),
            country=raw.get("country") or None,
        )

    @staticmethod
    def _sort_key(member: str, score: float, elapsed: Optional[float]) -> Tuple[float, float, str]:
        # Missing time counts as 0, as in _assemble
        return (-float(score), float(elapsed or 0.0), member)

    @classmethod
    def _assemble(
        cls,
        rank: int,
        member: str,
        score: float,
        elapsed: Optional[float],
        attributes: Dict[str, str],
        month_label: Optional[str],
    ) -> RankedEntry:
        country = attributes.get("country") or None
        return RankedEntry(
            rank_position=rank,
            player_id=int(member),
            score=int(score),
            elapsed_time=float(elapsed) if elapsed is not None else 0.0,
            username=attributes.get("username", ""),
            full_name=attributes.get("full_name", ""),
            avatar=attributes.get("avatar") or None,
            current_level=cls._level(attributes),
            country=country,
            region=attributes.get("region") or None,
            month_identifier=month_label,
            country_flag=country_flag(country),
        )
