"""
Leaderboard value objects.

Immutable records passed between the ranking store, the snapshot repository,
the persistence synchronizer and the rollover scheduler. Nothing here talks
to Redis or the database.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from mathboard.database.models.enums import LeaderboardType
from mathboard.modules.leaderboard.constants import MEDALS


# ============================================================================
# Ranking Store Records
# ============================================================================


@dataclass(frozen=True)
class PlayerAttributes:
    """
    Display attributes cached next to a player's scores.

    Every field is optional; missing values fall back to the defaults below
    when an entry is assembled.
    """

    username: str = ""
    full_name: str = ""
    avatar: Optional[str] = None
    current_level: int = 1
    country: Optional[str] = None


@dataclass(frozen=True)
class RankedEntry:
    """One position of an assembled leaderboard (live or historical)."""

    rank_position: int
    player_id: int
    score: int
    elapsed_time: float
    username: str = ""
    full_name: str = ""
    avatar: Optional[str] = None
    current_level: int = 1
    country: Optional[str] = None
    region: Optional[str] = None
    month_identifier: Optional[str] = None
    country_flag: Optional[str] = None

    @property
    def medal(self) -> Optional[str]:
        return MEDALS.get(self.rank_position)

    @property
    def is_top_three(self) -> bool:
        return self.rank_position <= 3

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["medal"] = self.medal
        payload["is_top_three"] = self.is_top_three
        return payload


# ============================================================================
# Snapshot Records
# ============================================================================


@dataclass(frozen=True)
class PartitionKey:
    """Identifies one durable snapshot partition."""

    leaderboard_type: LeaderboardType
    month_identifier: Optional[str]
    region: Optional[str]
    difficulty_level: int

    def describe(self) -> str:
        return (
            f"{self.leaderboard_type.value}/{self.month_identifier or '-'}/"
            f"{self.region or 'global'}/{self.difficulty_level}"
        )


@dataclass(frozen=True)
class SnapshotRow:
    """One row to be written into a snapshot partition."""

    stat_record_id: int
    player_id: int
    rank_position: int
    score: int
    elapsed_time: float
    username: str = ""
    full_name: str = ""
    avatar: Optional[str] = None
    current_level: int = 1
    country: Optional[str] = None
    total_games: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Backup / Rollover Records
# ============================================================================


@dataclass(frozen=True)
class BackupOptions:
    """
    Options for `PersistenceSynchronizer.backup`.

    `difficulty_levels` and `regions` default to the configured lists when
    left as None. `month_identifier` defaults to the current month in the
    leaderboard timezone (monthly backups only).
    """

    include_rewards: bool = False
    clear_source_after: bool = False
    difficulty_levels: Optional[Tuple[int, ...]] = None
    regions: Optional[Tuple[str, ...]] = None
    leaderboard_type: LeaderboardType = LeaderboardType.MONTHLY
    month_identifier: Optional[str] = None


@dataclass(frozen=True)
class RewardOutcome:
    """Result of one reward payout attempt (success or failure)."""

    success: bool
    player_id: int
    rank: int
    difficulty: int
    amount: int
    score: int
    month_identifier: Optional[str]
    username: str = ""
    new_balance: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PartitionStatus(str, Enum):
    STORED = "stored"
    EMPTY = "empty"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PartitionOutcome:
    """Result of persisting (and optionally clearing) one region x difficulty cell."""

    region: str
    difficulty: int
    status: PartitionStatus
    rows_stored: int = 0
    skipped_players: Tuple[int, ...] = ()
    source_cleared: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (PartitionStatus.STORED, PartitionStatus.EMPTY)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["skipped_players"] = list(self.skipped_players)
        return payload


class BackupStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BackupResult:
    """
    Aggregated outcome of a backup run.

    Mutable while the run is in progress; the synchronizer returns it once
    every partition has been processed.
    """

    leaderboard_type: LeaderboardType
    month_identifier: Optional[str]
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_rows_stored: int = 0
    rewarded_players: List[RewardOutcome] = field(default_factory=list)
    failed_rewards: List[RewardOutcome] = field(default_factory=list)
    partitions: List[PartitionOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    fatal_error: Optional[str] = None

    @property
    def status(self) -> BackupStatus:
        if self.fatal_error is not None:
            return BackupStatus.FAILED
        failed_cells = [item for item in self.partitions if not item.ok]
        if failed_cells and len(failed_cells) == len(self.partitions):
            return BackupStatus.FAILED
        if failed_cells or self.failed_rewards or self.errors:
            return BackupStatus.PARTIAL
        return BackupStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "leaderboard_type": self.leaderboard_type.value,
            "month_identifier": self.month_identifier,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total_rows_stored": self.total_rows_stored,
            "rewarded_players": [item.to_dict() for item in self.rewarded_players],
            "failed_rewards": [item.to_dict() for item in self.failed_rewards],
            "partitions": [item.to_dict() for item in self.partitions],
            "errors": list(self.errors),
            "fatal_error": self.fatal_error,
        }


@dataclass(frozen=True)
class RolloverResult:
    """Result of one rollover execution attempt (including rejected ones)."""

    success: bool
    message: str
    month_identifier: Optional[str] = None
    backup: Optional[BackupResult] = None
    duration_seconds: float = 0.0
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "month_identifier": self.month_identifier,
            "backup": self.backup.to_dict() if self.backup else None,
            "duration_seconds": self.duration_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class RolloverStatus:
    """Read-only view of the scheduler's job state."""

    is_running: bool
    job_active: bool
    schedule: str
    timezone: str
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    last_error: Optional[str]
    last_result: Optional[RolloverResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "job_active": self.job_active,
            "schedule": self.schedule,
            "timezone": self.timezone,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_error": self.last_error,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
