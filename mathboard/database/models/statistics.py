"""
PlayerStatistics: per-difficulty aggregate results for a player.
Schema only; written by the game-completion flow, read by rollover backups.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mathboard.core.database.base import Base, IdMixin, TimestampMixin


class PlayerStatistics(Base, IdMixin, TimestampMixin):
    """
    Best and cumulative results of one player on one difficulty tier.

    Snapshot rows reference this table through `stat_record_id`; a player
    without a statistics row for a tier cannot appear in a durable snapshot.
    """

    __tablename__ = "player_statistics"
    __table_args__ = (
        UniqueConstraint("player_id", "difficulty_level", name="uq_player_statistics_player_difficulty"),
        Index("ix_player_statistics_difficulty_best", "difficulty_level", "best_score"),
    )

    player_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    difficulty_level: Mapped[int] = mapped_column(Integer, nullable=False)

    games_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_score_time: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        doc="Elapsed seconds of the game that produced best_score",
    )
    best_score_achieved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    total_score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<PlayerStatistics(player_id={self.player_id}, "
            f"difficulty={self.difficulty_level}, best_score={self.best_score})>"
        )
