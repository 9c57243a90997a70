"""
Leaderboard Module
==================

Live rankings, durable monthly snapshots, period rewards and the monthly
rollover.

Components
----------
- RankingStore: Redis sorted-set rankings per (scope, difficulty, period)
- RegionResolver: country code -> region
- SnapshotRepository / StatisticsRepository: durable storage access
- RewardDistributor: exactly-once reward payout for the monthly top 3
- PersistenceSynchronizer: live -> snapshot backup and rollover flow
- RolloverScheduler: cron trigger with a single-flight guard
- LeaderboardService: facade used by the rest of the application
"""

from mathboard.modules.leaderboard.models import (
    BackupOptions,
    BackupResult,
    BackupStatus,
    PartitionOutcome,
    PartitionStatus,
    PlayerAttributes,
    RankedEntry,
    RewardOutcome,
    RolloverResult,
    RolloverStatus,
)
from mathboard.modules.leaderboard.persistence import PersistenceSynchronizer
from mathboard.modules.leaderboard.ranking_store import RankingStore
from mathboard.modules.leaderboard.regions import RegionResolver
from mathboard.modules.leaderboard.repository import SnapshotRepository, StatisticsRepository
from mathboard.modules.leaderboard.rewards import DatabaseCurrencyLedger, RewardDistributor
from mathboard.modules.leaderboard.scheduler import RolloverScheduler
from mathboard.modules.leaderboard.service import LeaderboardService

__all__ = [
    "BackupOptions",
    "BackupResult",
    "BackupStatus",
    "DatabaseCurrencyLedger",
    "LeaderboardService",
    "PartitionOutcome",
    "PartitionStatus",
    "PersistenceSynchronizer",
    "PlayerAttributes",
    "RankedEntry",
    "RankingStore",
    "RegionResolver",
    "RewardDistributor",
    "RewardOutcome",
    "RolloverResult",
    "RolloverScheduler",
    "RolloverStatus",
    "SnapshotRepository",
    "StatisticsRepository",
]
