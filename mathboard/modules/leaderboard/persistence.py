"""
PersistenceSynchronizer: live rankings -> durable snapshots.

Purpose
-------
Copy ranked leaderboards from the ranking store into `leaderboard_snapshots`,
optionally paying period rewards first and clearing the live sets after.

Flow per difficulty
-------------------
1. include_rewards and "global" requested: read the global monthly top 3
   BEFORE anything is cleared and pay it through RewardDistributor
2. per region: fetch up to `leaderboard.snapshot_limit` entries, resolve
   each player's statistics row, `replace_partition`
3. clear_source_after: drop that region's score set and time set

Failure Model
-------------
- Pre-flight: an unreachable database aborts the whole run (fatal)
- Each (region, difficulty) cell runs under its own timeout; a failed or
  timed-out cell is recorded and the others continue
- A cell is only cleared after its partition was stored
- An empty live set never overwrites an existing partition, so re-running a
  rollover against already-cleared sets keeps the first run's snapshot
- Nothing is raised to the caller; `BackupResult.status` tells the story

Configuration Keys
------------------
- leaderboard.snapshot_limit (default 500)
- rollover.partition_timeout_seconds (default 60)
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from mathboard.core.config.manager import ConfigManager
from mathboard.core.database.service import DatabaseService
from mathboard.core.logging.logger import LogContext, get_logger
from mathboard.database.models.enums import LeaderboardType
from mathboard.modules.leaderboard.constants import (
    DEFAULT_PARTITION_TIMEOUT_SECONDS,
    DEFAULT_SNAPSHOT_LIMIT,
    GLOBAL_SCOPE,
)
from mathboard.modules.leaderboard.models import (
    BackupOptions,
    BackupResult,
    PartitionOutcome,
    PartitionStatus,
    SnapshotRow,
)
from mathboard.modules.leaderboard.periods import current_month_identifier, validate_month_identifier
from mathboard.modules.leaderboard.ranking_store import RankingStore
from mathboard.modules.leaderboard.repository import SnapshotRepository, StatisticsRepository
from mathboard.modules.leaderboard.rewards import RewardDistributor
from mathboard.modules.shared.base_service import BaseService
from mathboard.modules.shared.exceptions import PartitionPersistenceError, ValidationError

logger = get_logger(__name__)


class PersistenceSynchronizer(BaseService):
    """
    Orchestrates backups and the monthly rollover.

    Public Methods
    --------------
    - backup(options) -> BackupResult
    - persist_monthly_rollover(month_identifier=None) -> BackupResult
    """

    def __init__(
        self,
        store: RankingStore,
        snapshots: SnapshotRepository,
        statistics: StatisticsRepository,
        rewards: RewardDistributor,
        config_manager: Any = ConfigManager,
        event_bus: Any = None,
        database: Any = DatabaseService,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(f"{__name__}.PersistenceSynchronizer"))
        self._store = store
        self._snapshots = snapshots
        self._statistics = statistics
        self._rewards = rewards
        self._database = database

    @property
    def snapshot_limit(self) -> int:
        return int(self.get_config("leaderboard.snapshot_limit", DEFAULT_SNAPSHOT_LIMIT))

    @property
    def partition_timeout(self) -> float:
        return float(
            self.get_config("rollover.partition_timeout_seconds", DEFAULT_PARTITION_TIMEOUT_SECONDS)
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def persist_monthly_rollover(self, month_identifier: Optional[str] = None) -> BackupResult:
        """Snapshot every monthly partition, pay global rewards, clear monthly sets."""
        return await self.backup(
            BackupOptions(
                include_rewards=True,
                clear_source_after=True,
                leaderboard_type=LeaderboardType.MONTHLY,
                month_identifier=month_identifier,
            )
        )

    async def backup(self, options: Optional[BackupOptions] = None) -> BackupResult:
        """
        Persist live leaderboards according to `options`.

        Never raises: invalid options and an unreachable database produce a
        FAILED result, per-cell problems a PARTIAL one.
        """
        options = options or BackupOptions()
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        board_type = LeaderboardType(options.leaderboard_type)

        result = BackupResult(
            leaderboard_type=board_type,
            month_identifier=None,
            started_at=started_at,
        )

        try:
            difficulty_levels, regions, month = self._resolve_options(options, board_type)
        except ValidationError as exc:
            result.fatal_error = str(exc)
            result.finished_at = datetime.now(timezone.utc)
            self.log_error("backup", exc)
            return result
        result.month_identifier = month

        self.log_operation(
            "backup",
            leaderboard_type=board_type.value,
            month_identifier=month,
            include_rewards=options.include_rewards,
            clear_source_after=options.clear_source_after,
            difficulty_levels=list(difficulty_levels),
            regions=list(regions),
        )

        if not await self._database.health_check():
            result.fatal_error = "Snapshot database unreachable (pre-flight health check failed)"
            result.finished_at = datetime.now(timezone.utc)
            logger.critical(
                "Backup aborted: database unreachable",
                extra={"leaderboard_type": board_type.value, "month_identifier": month},
            )
            return result

        for difficulty in difficulty_levels:
            async with LogContext(difficulty=difficulty, operation="backup"):
                if options.include_rewards and GLOBAL_SCOPE in regions:
                    await self._pay_rewards(result, difficulty, month)

                for region in regions:
                    outcome = await self._run_cell(
                        region,
                        difficulty,
                        board_type,
                        month,
                        options.clear_source_after,
                    )
                    result.partitions.append(outcome)
                    result.total_rows_stored += outcome.rows_stored

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Backup finished",
            extra={
                "status": result.status.value,
                "leaderboard_type": board_type.value,
                "month_identifier": month,
                "total_rows_stored": result.total_rows_stored,
                "rewarded_players": len(result.rewarded_players),
                "failed_rewards": len(result.failed_rewards),
                "failed_partitions": sum(1 for item in result.partitions if not item.ok),
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return result

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _resolve_options(
        self,
        options: BackupOptions,
        board_type: LeaderboardType,
    ) -> Tuple[Tuple[int, ...], Tuple[str, ...], Optional[str]]:
        difficulty_levels = tuple(options.difficulty_levels or self._store.difficulty_levels)
        regions = tuple(options.regions or self._store.regions)

        for difficulty in difficulty_levels:
            if difficulty not in self._store.difficulty_levels:
                raise ValidationError("difficulty_levels", f"Unknown difficulty {difficulty!r}")
        for region in regions:
            if region != GLOBAL_SCOPE and region not in self._store.regions:
                raise ValidationError("regions", f"Unknown region {region!r}")

        if board_type is LeaderboardType.MONTHLY:
            month = validate_month_identifier(
                options.month_identifier or current_month_identifier(self._store.timezone)
            )
        else:
            month = None
        return difficulty_levels, regions, month

    async def _pay_rewards(self, result: BackupResult, difficulty: int, month: Optional[str]) -> None:
        try:
            top_three = await asyncio.wait_for(
                self._store.get_top_n(
                    GLOBAL_SCOPE,
                    difficulty,
                    LeaderboardType.MONTHLY,
                    3,
                    month_identifier=month,
                ),
                timeout=self.partition_timeout,
            )
        except Exception as exc:
            # Recorded on the result; partitions of this difficulty still run
            message = f"Reward snapshot for difficulty {difficulty} failed: {type(exc).__name__}: {exc}"
            result.errors.append(message)
            self.log_error("pay_rewards", exc, difficulty=difficulty, month_identifier=month)
            return

        try:
            outcomes = await self._rewards.distribute(top_three, difficulty, month)
        except Exception as exc:
            message = f"Reward payout for difficulty {difficulty} failed: {type(exc).__name__}: {exc}"
            result.errors.append(message)
            self.log_error("pay_rewards", exc, difficulty=difficulty, month_identifier=month)
            return

        for outcome in outcomes:
            if outcome.success:
                result.rewarded_players.append(outcome)
            else:
                result.failed_rewards.append(outcome)

    async def _run_cell(
        self,
        region: str,
        difficulty: int,
        board_type: LeaderboardType,
        month: Optional[str],
        clear_source_after: bool,
    ) -> PartitionOutcome:
        try:
            return await asyncio.wait_for(
                self._process_cell(region, difficulty, board_type, month, clear_source_after),
                timeout=self.partition_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Partition timed out",
                extra={
                    "region": region,
                    "difficulty": difficulty,
                    "timeout_seconds": self.partition_timeout,
                },
            )
            return PartitionOutcome(
                region=region,
                difficulty=difficulty,
                status=PartitionStatus.TIMED_OUT,
                error=f"Timed out after {self.partition_timeout}s",
            )
        except Exception as exc:
            # Partial-failure isolation: record and move on to the next cell
            failure = PartitionPersistenceError(region, difficulty, f"{type(exc).__name__}: {exc}")
            self.log_error("persist_partition", failure, error_code=failure.error_code)
            return PartitionOutcome(
                region=region,
                difficulty=difficulty,
                status=PartitionStatus.FAILED,
                error=failure.reason,
            )

    async def _process_cell(
        self,
        region: str,
        difficulty: int,
        board_type: LeaderboardType,
        month: Optional[str],
        clear_source_after: bool,
    ) -> PartitionOutcome:
        entries = await self._store.get_top_n(
            region,
            difficulty,
            board_type,
            self.snapshot_limit,
            month_identifier=month,
        )

        statistics = await self._statistics.find_for_players(
            [entry.player_id for entry in entries],
            difficulty,
        )

        rows: List[SnapshotRow] = []
        skipped: List[int] = []
        now = datetime.now(timezone.utc)
        for entry in entries:
            record = statistics.get(entry.player_id)
            if record is None:
                skipped.append(entry.player_id)
                logger.warning(
                    "No statistics row for ranked player; skipping snapshot row",
                    extra={"player_id": entry.player_id, "difficulty": difficulty, "region": region},
                )
                continue
            rows.append(
                SnapshotRow(
                    stat_record_id=record.id,
                    player_id=entry.player_id,
                    rank_position=len(rows) + 1,
                    score=entry.score,
                    elapsed_time=entry.elapsed_time,
                    username=entry.username,
                    full_name=entry.full_name,
                    avatar=entry.avatar,
                    current_level=entry.current_level,
                    country=entry.country,
                    total_games=int(record.games_played or 0),
                    last_updated=now,
                )
            )

        stored = 0
        if rows:
            stored = await self._snapshots.replace_partition(board_type, month, region, difficulty, rows)

        cleared = False
        if clear_source_after:
            await self._store.clear_partition(region, difficulty, board_type)
            cleared = True

        return PartitionOutcome(
            region=region,
            difficulty=difficulty,
            status=PartitionStatus.STORED if rows else PartitionStatus.EMPTY,
            rows_stored=stored,
            skipped_players=tuple(skipped),
            source_cleared=cleared,
        )
