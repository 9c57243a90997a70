"""
Leaderboard Service
===================

Purpose
-------
Single entry point for the rest of the application: record game results,
read live or historical leaderboards, inspect stats, and drive backups and
rollovers.

Domain
------
- record_game_result(): write trigger called on game completion
- get_leaderboard(): live ranking for the current period, durable snapshot
  for past months, snapshot fallback when the live store is empty or down
- get_player_rank(), list_available_months(), get_stats()
- sync_from_statistics(): rebuild the live store from `player_statistics`
- backup_now(), trigger_rollover(), rollover_status(), clear_live_data()

Events
------
- leaderboard.score_recorded
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from mathboard.core.config.manager import ConfigManager
from mathboard.core.exceptions import MathboardInfrastructureException
from mathboard.core.logging.logger import LogContext, get_logger
from mathboard.database.models.enums import LeaderboardType
from mathboard.modules.leaderboard.constants import (
    DEFAULT_MAX_PAGE_SIZE,
    EVENT_SCORE_RECORDED,
    GLOBAL_SCOPE,
)
from mathboard.modules.leaderboard.models import (
    BackupOptions,
    BackupResult,
    PlayerAttributes,
    RankedEntry,
    RolloverResult,
    RolloverStatus,
)
from mathboard.modules.leaderboard.periods import current_month_identifier, validate_month_identifier
from mathboard.modules.leaderboard.persistence import PersistenceSynchronizer
from mathboard.modules.leaderboard.ranking_store import RankingStore
from mathboard.modules.leaderboard.repository import SnapshotRepository, StatisticsRepository
from mathboard.modules.leaderboard.scheduler import RolloverScheduler
from mathboard.modules.shared.base_service import BaseService
from mathboard.modules.shared.exceptions import NotFoundError, ValidationError

AttributesProvider = Callable[[int], Awaitable[Optional[PlayerAttributes]]]


class LeaderboardService(BaseService):
    """
    Facade over the ranking store, snapshot repository, persistence
    synchronizer and rollover scheduler.
    """

    def __init__(
        self,
        store: RankingStore,
        snapshots: SnapshotRepository,
        statistics: StatisticsRepository,
        synchronizer: PersistenceSynchronizer,
        scheduler: Optional[RolloverScheduler] = None,
        config_manager: Any = ConfigManager,
        event_bus: Any = None,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(f"{__name__}.LeaderboardService"))
        self.store = store
        self.snapshots = snapshots
        self.statistics = statistics
        self.synchronizer = synchronizer
        self.scheduler = scheduler

    # ========================================================================
    # WRITE TRIGGER
    # ========================================================================

    async def record_game_result(
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
        Record a finished game in the live leaderboards.

        Returns False (and logs) when the ranking store is unavailable; the
        game flow is never interrupted by leaderboard infrastructure.

        Raises:
            ValidationError: If difficulty, score or elapsed_time are invalid
        """
        self.validate_positive_int(player_id, "player_id")

        async with LogContext(player_id=player_id, difficulty=difficulty, operation="record_game_result"):
            try:
                written = await self.store.update_score(
                    player_id,
                    difficulty,
                    score,
                    elapsed_time,
                    attrs,
                    keep_best=keep_best,
                )
            except MathboardInfrastructureException as exc:
                self.log_error("record_game_result", exc, player_id=player_id, difficulty=difficulty)
                return False

        if written:
            await self.emit_event(
                EVENT_SCORE_RECORDED,
                {
                    "player_id": player_id,
                    "difficulty": difficulty,
                    "score": score,
                    "elapsed_time": float(elapsed_time),
                    "region": self.store.resolver.resolve(attrs.country if attrs else None),
                },
            )
        return written

    # ========================================================================
    # READ API
    # ========================================================================

    async def get_leaderboard(
        self,
        scope: str = GLOBAL_SCOPE,
        difficulty: int = 1,
        period: Union[LeaderboardType, str] = LeaderboardType.ALL_TIME,
        month_identifier: Optional[str] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """
        Ranked list for one dimension.

        - A monthly request for a past month reads the durable snapshot
        - Otherwise the live store is read; when it is empty or unavailable
          the latest snapshot of the same dimension is returned instead

        Returns:
            Dict with scope, difficulty, period, month_identifier, source
            ("live" | "snapshot" | "empty") and entries
        """
        board_type = LeaderboardType(period)
        self.validate_positive_int(limit, "limit")
        max_page = int(self.get_config("leaderboard.max_page_size", DEFAULT_MAX_PAGE_SIZE))
        if limit > max_page:
            raise ValidationError("limit", f"Limit cannot exceed {max_page}")

        current_month = current_month_identifier(self.store.timezone)
        if board_type is LeaderboardType.MONTHLY and month_identifier is not None:
            month_identifier = validate_month_identifier(month_identifier)
            if month_identifier != current_month:
                entries = await self.snapshots.query_partition(
                    board_type, month_identifier, scope, difficulty, limit
                )
                return self._page(scope, difficulty, board_type, month_identifier, "snapshot", entries)

        live_month = current_month if board_type is LeaderboardType.MONTHLY else None
        try:
            entries = await self.store.get_top_n(
                scope, difficulty, board_type, limit, month_identifier=live_month
            )
        except MathboardInfrastructureException as exc:
            self.log_error("get_leaderboard", exc, scope=scope, difficulty=difficulty)
            entries = []

        if entries:
            return self._page(scope, difficulty, board_type, live_month, "live", entries)

        return await self._latest_snapshot(scope, difficulty, board_type, limit)

    async def _latest_snapshot(
        self,
        scope: str,
        difficulty: int,
        board_type: LeaderboardType,
        limit: int,
    ) -> Dict[str, Any]:
        month: Optional[str] = None
        try:
            if board_type is LeaderboardType.MONTHLY:
                months = await self.snapshots.list_available_months(board_type)
                if not months:
                    return self._page(scope, difficulty, board_type, None, "empty", [])
                month = months[0]
            entries = await self.snapshots.query_partition(board_type, month, scope, difficulty, limit)
        except (SQLAlchemyError, MathboardInfrastructureException) as exc:
            self.log_error("latest_snapshot", exc, scope=scope, difficulty=difficulty)
            return self._page(scope, difficulty, board_type, month, "empty", [])

        source = "snapshot" if entries else "empty"
        return self._page(scope, difficulty, board_type, month, source, entries)

    @staticmethod
    def _page(
        scope: str,
        difficulty: int,
        board_type: LeaderboardType,
        month_identifier: Optional[str],
        source: str,
        entries: Sequence[RankedEntry],
    ) -> Dict[str, Any]:
        return {
            "scope": scope,
            "difficulty": difficulty,
            "period": board_type.value,
            "month_identifier": month_identifier,
            "source": source,
            "entries": [entry.to_dict() for entry in entries],
        }

    async def get_player_rank(
        self,
        player_id: int,
        scope: str = GLOBAL_SCOPE,
        difficulty: int = 1,
        period: Union[LeaderboardType, str] = LeaderboardType.ALL_TIME,
    ) -> int:
        """
        Live rank of a player.

        Raises:
            NotFoundError: If the player has no entry in that dimension
        """
        rank = await self.store.get_player_rank(player_id, scope, difficulty, period)
        if rank is None:
            raise NotFoundError(
                "LeaderboardEntry",
                f"player_id={player_id}, scope={scope}, difficulty={difficulty}, period={LeaderboardType(period).value}",
            )
        return rank

    async def list_available_months(
        self,
        leaderboard_type: Union[LeaderboardType, str] = LeaderboardType.MONTHLY,
    ) -> List[str]:
        return await self.snapshots.list_available_months(leaderboard_type)

    async def get_stats(self) -> Dict[str, Any]:
        return await self.store.get_stats()

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    async def sync_from_statistics(
        self,
        difficulty_levels: Optional[Sequence[int]] = None,
        attributes_provider: Optional[AttributesProvider] = None,
    ) -> Dict[str, int]:
        """
        Re-seed the live store from `player_statistics` using the best-score
        guard, so newer live results are never overwritten by older bests.

        Display attributes come from `attributes_provider` when given, else
        from the cached attribute hash.

        Returns:
            Counts: processed, synced, skipped, failed
        """
        levels = list(difficulty_levels or self.store.difficulty_levels)
        records = await self.statistics.list_best_scores(levels)
        counts = {"processed": 0, "synced": 0, "skipped": 0, "failed": 0}

        for record in records:
            counts["processed"] += 1
            try:
                attrs = None
                if attributes_provider is not None:
                    attrs = await attributes_provider(record.player_id)
                if attrs is None:
                    attrs = await self.store.get_player_attributes(record.player_id, record.difficulty_level)

                written = await self.store.update_score(
                    record.player_id,
                    record.difficulty_level,
                    int(record.best_score),
                    float(record.best_score_time or 0.0),
                    attrs,
                    keep_best=True,
                )
            except (MathboardInfrastructureException, ValidationError) as exc:
                counts["failed"] += 1
                self.log_error(
                    "sync_from_statistics",
                    exc,
                    player_id=record.player_id,
                    difficulty=record.difficulty_level,
                )
                continue

            counts["synced" if written else "skipped"] += 1

        self.log_operation("sync_from_statistics", **counts)
        return counts

    async def backup_now(
        self,
        *,
        include_rewards: bool = False,
        clear_source_after: bool = False,
        difficulty_levels: Optional[Sequence[int]] = None,
        regions: Optional[Sequence[str]] = None,
        leaderboard_type: Union[LeaderboardType, str] = LeaderboardType.MONTHLY,
        month_identifier: Optional[str] = None,
    ) -> BackupResult:
        """Manual backup; defaults to a mid-month snapshot without rewards or clearing."""
        return await self.synchronizer.backup(
            BackupOptions(
                include_rewards=include_rewards,
                clear_source_after=clear_source_after,
                difficulty_levels=tuple(difficulty_levels) if difficulty_levels else None,
                regions=tuple(regions) if regions else None,
                leaderboard_type=LeaderboardType(leaderboard_type),
                month_identifier=month_identifier,
            )
        )

    def _require_scheduler(self) -> RolloverScheduler:
        if self.scheduler is None:
            raise NotFoundError("RolloverScheduler")
        return self.scheduler

    async def trigger_rollover(self, month_identifier: Optional[str] = None) -> RolloverResult:
        return await self._require_scheduler().run_manually(month_identifier)

    def rollover_status(self) -> RolloverStatus:
        return self._require_scheduler().get_status()

    async def clear_live_data(self) -> int:
        """Drop every live leaderboard key (maintenance only)."""
        removed = await self.store.clear_all()
        self.log_operation("clear_live_data", deleted=removed)
        return removed
