"""
LeaderboardSnapshot: durable copy of a ranked leaderboard partition.

A partition is identified by (leaderboard_type, month_identifier, region,
difficulty_level). `month_identifier` is "YYYY-MM" for monthly snapshots and
NULL for all-time; `region` is NULL for the global scope.

Schema only. Partitions are written exclusively by
`SnapshotRepository.replace_partition` (delete + bulk insert in one
transaction).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mathboard.core.database.base import Base, IdMixin, TimestampMixin, utcnow


class LeaderboardSnapshot(Base, IdMixin, TimestampMixin):
    """One ranked player inside one snapshot partition."""

    # ========================================================================
    # TABLE CONFIGURATION
    # ========================================================================

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "leaderboard_type",
            "month_identifier",
            "stat_record_id",
            "region",
            "difficulty_level",
            name="uq_leaderboard_snapshots_partition_player",
        ),
        Index(
            "ix_leaderboard_snapshots_partition_rank",
            "leaderboard_type",
            "month_identifier",
            "region",
            "difficulty_level",
            "rank_position",
        ),
        Index("ix_leaderboard_snapshots_last_updated", "last_updated"),
    )

    # ========================================================================
    # PARTITION KEY
    # ========================================================================

    leaderboard_type: Mapped[str] = mapped_column(String(16), nullable=False)
    month_identifier: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    difficulty_level: Mapped[int] = mapped_column(Integer, nullable=False)

    # ========================================================================
    # RANKING
    # ========================================================================

    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    stat_record_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("player_statistics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    player_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    elapsed_time: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # ========================================================================
    # DISPLAY FIELDS (denormalized at snapshot time)
    # ========================================================================

    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    avatar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    country: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    total_games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<LeaderboardSnapshot(type={self.leaderboard_type}, month={self.month_identifier}, "
            f"region={self.region}, difficulty={self.difficulty_level}, "
            f"rank={self.rank_position}, player_id={self.player_id})>"
        )
