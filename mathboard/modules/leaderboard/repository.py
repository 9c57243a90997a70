"""
Snapshot and statistics repositories.

SnapshotRepository
------------------
Durable leaderboard partitions in `leaderboard_snapshots`. A partition is
(leaderboard_type, month_identifier, region, difficulty_level) and is only
ever written by `replace_partition`: delete + bulk insert inside ONE
transaction, so PostgreSQL readers see either the old or the new partition,
never an empty one. Calling it twice with the same rows is idempotent.

StatisticsRepository
--------------------
Read access to `player_statistics`, the source of truth that snapshot rows
reference through `stat_record_id`.

Both repositories own their transaction boundary via DatabaseService and
route writes through DatabaseRetryPolicy (transient driver failures only;
a partition rewrite is idempotent, so retrying it is safe).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import select

from mathboard.core.database.retry_policy import DatabaseRetryPolicy
from mathboard.core.database.service import DatabaseService
from mathboard.core.logging.logger import get_logger
from mathboard.database.models.enums import LeaderboardType
from mathboard.database.models.leaderboard import LeaderboardSnapshot
from mathboard.database.models.statistics import PlayerStatistics
from mathboard.modules.leaderboard.constants import GLOBAL_SCOPE
from mathboard.modules.leaderboard.models import PartitionKey, RankedEntry, SnapshotRow
from mathboard.modules.leaderboard.periods import validate_month_identifier
from mathboard.modules.leaderboard.regions import country_flag
from mathboard.modules.shared.base_repository import BaseRepository
from mathboard.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)


def build_partition_key(
    leaderboard_type: Union[LeaderboardType, str],
    month_identifier: Optional[str],
    region: Optional[str],
    difficulty: int,
) -> PartitionKey:
    """
    Normalize partition coordinates.

    - "global" and None both mean the global scope (stored as NULL)
    - monthly partitions require a YYYY-MM month; all-time ones store NULL
    """
    try:
        board_type = LeaderboardType(leaderboard_type)
    except ValueError as exc:
        raise ValidationError("leaderboard_type", f"Unknown type {leaderboard_type!r}") from exc

    if board_type is LeaderboardType.MONTHLY:
        if month_identifier is None:
            raise ValidationError("month_identifier", "Monthly partitions need a month identifier")
        month_identifier = validate_month_identifier(month_identifier)
    else:
        month_identifier = None

    return PartitionKey(
        leaderboard_type=board_type,
        month_identifier=month_identifier,
        region=None if region in (None, GLOBAL_SCOPE) else region,
        difficulty_level=int(difficulty),
    )


class SnapshotRepository(BaseRepository[LeaderboardSnapshot]):
    """Durable leaderboard partitions."""

    def __init__(
        self,
        database: Any = DatabaseService,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
    ) -> None:
        super().__init__(LeaderboardSnapshot, get_logger(f"{__name__}.SnapshotRepository"))
        self._database = database
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()

    @staticmethod
    def _partition_conditions(key: PartitionKey) -> list:
        model = LeaderboardSnapshot
        return [
            model.leaderboard_type == key.leaderboard_type.value,
            model.month_identifier.is_(None)
            if key.month_identifier is None
            else model.month_identifier == key.month_identifier,
            model.region.is_(None) if key.region is None else model.region == key.region,
            model.difficulty_level == key.difficulty_level,
        ]

    @staticmethod
    def _validate_rows(rows: Sequence[SnapshotRow]) -> None:
        ranks = [row.rank_position for row in rows]
        if ranks != list(range(1, len(rows) + 1)):
            raise ValidationError("rows", "Rank positions must be dense 1..N in order")
        for previous, current in zip(rows, rows[1:]):
            if current.score > previous.score or (
                current.score == previous.score and current.elapsed_time < previous.elapsed_time
            ):
                raise ValidationError(
                    "rows",
                    f"Rows out of order at rank {current.rank_position}",
                )

    # ========================================================================
    # WRITES
    # ========================================================================

    async def replace_partition(
        self,
        leaderboard_type: Union[LeaderboardType, str],
        month_identifier: Optional[str],
        region: Optional[str],
        difficulty: int,
        rows: Sequence[SnapshotRow],
    ) -> int:
        """
        Replace a whole partition with `rows` in one transaction.

        Returns
        -------
        int
            Number of rows now stored in the partition.

        Raises
        ------
        ValidationError
            If the coordinates are invalid or rows are not densely ranked in
            score order.
        """
        key = build_partition_key(leaderboard_type, month_identifier, region, difficulty)
        self._validate_rows(rows)

        async def _replace() -> int:
            async with self._database.get_transaction() as session:
                deleted = await self.delete_where(session, *self._partition_conditions(key))
                self.add_many(
                    session,
                    [
                        LeaderboardSnapshot(
                            leaderboard_type=key.leaderboard_type.value,
                            month_identifier=key.month_identifier,
                            region=key.region,
                            difficulty_level=key.difficulty_level,
                            rank_position=row.rank_position,
                            stat_record_id=row.stat_record_id,
                            player_id=row.player_id,
                            score=row.score,
                            elapsed_time=row.elapsed_time,
                            username=row.username or None,
                            full_name=row.full_name or "",
                            avatar=row.avatar,
                            current_level=row.current_level,
                            country=row.country,
                            total_games=row.total_games,
                            last_updated=row.last_updated,
                        )
                        for row in rows
                    ],
                )
                await self.flush(session)
                return deleted

        deleted = await self._retry.execute(
            _replace,
            operation_name="snapshot.replace_partition",
            context={"partition": key.describe()},
        )

        logger.info(
            "Snapshot partition replaced",
            extra={
                "partition": key.describe(),
                "rows_deleted": deleted,
                "rows_inserted": len(rows),
            },
        )
        return len(rows)

    # ========================================================================
    # READS
    # ========================================================================

    async def list_available_months(
        self,
        leaderboard_type: Union[LeaderboardType, str] = LeaderboardType.MONTHLY,
    ) -> List[str]:
        """Distinct month identifiers with stored snapshots, newest first."""
        board_type = LeaderboardType(leaderboard_type)
        model = LeaderboardSnapshot
        stmt = (
            select(model.month_identifier)
            .where(
                model.leaderboard_type == board_type.value,
                model.month_identifier.is_not(None),
            )
            .distinct()
            .order_by(model.month_identifier.desc())
        )
        async with self._database.get_session() as session:
            result = await session.execute(stmt)
            return [value for value in result.scalars().all()]

    async def query_partition(
        self,
        leaderboard_type: Union[LeaderboardType, str],
        month_identifier: Optional[str],
        region: Optional[str],
        difficulty: int,
        limit: Optional[int] = None,
    ) -> List[RankedEntry]:
        """Rows of one partition ordered by rank ascending."""
        key = build_partition_key(leaderboard_type, month_identifier, region, difficulty)
        if limit is not None and limit <= 0:
            raise ValidationError("limit", f"limit must be positive, got {limit}")

        async with self._database.get_session() as session:
            records = await self.find_many_where(
                session,
                *self._partition_conditions(key),
                order_by=[LeaderboardSnapshot.rank_position.asc()],
                limit=limit,
            )

        return [
            RankedEntry(
                rank_position=record.rank_position,
                player_id=record.player_id,
                score=record.score,
                elapsed_time=record.elapsed_time,
                username=record.username or "",
                full_name=record.full_name,
                avatar=record.avatar,
                current_level=record.current_level,
                country=record.country,
                region=record.region,
                month_identifier=record.month_identifier,
                country_flag=country_flag(record.country),
            )
            for record in records
        ]

    async def count_partition(
        self,
        leaderboard_type: Union[LeaderboardType, str],
        month_identifier: Optional[str],
        region: Optional[str],
        difficulty: int,
    ) -> int:
        key = build_partition_key(leaderboard_type, month_identifier, region, difficulty)
        async with self._database.get_session() as session:
            return await self.count(session, *self._partition_conditions(key))


class StatisticsRepository(BaseRepository[PlayerStatistics]):
    """Read access to per-difficulty player statistics."""

    def __init__(self, database: Any = DatabaseService) -> None:
        super().__init__(PlayerStatistics, get_logger(f"{__name__}.StatisticsRepository"))
        self._database = database

    async def find_for_players(
        self,
        player_ids: Sequence[int],
        difficulty: int,
    ) -> Dict[int, PlayerStatistics]:
        """Statistics rows keyed by player id (players without a row are absent)."""
        if not player_ids:
            return {}
        async with self._database.get_session() as session:
            records = await self.find_many_where(
                session,
                PlayerStatistics.player_id.in_(list(player_ids)),
                PlayerStatistics.difficulty_level == difficulty,
            )
        return {record.player_id: record for record in records}

    async def list_best_scores(self, difficulty_levels: Sequence[int]) -> List[PlayerStatistics]:
        """Every statistics row with a recorded best score, for rebuilding the live store."""
        async with self._database.get_session() as session:
            return await self.find_many_where(
                session,
                PlayerStatistics.difficulty_level.in_(list(difficulty_levels)),
                PlayerStatistics.best_score > 0,
                order_by=[PlayerStatistics.difficulty_level, PlayerStatistics.best_score.desc()],
            )
