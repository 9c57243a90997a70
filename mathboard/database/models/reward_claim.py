"""
LeaderboardRewardClaim - Idempotency Guard for Period Rewards
=============================================================

Purpose
-------
Record every leaderboard payout so the same reward can never be paid twice,
even if a rollover is re-run against a ranking store that was not cleared.

Schema Design
-------------
- Composite primary key (player_id, claim_type, claim_key)
- claim_key encodes the payout, e.g. "2026-09:d1:r1"
  (month, difficulty, rank)
- amount and claimed_at kept for the audit trail
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mathboard.core.database.base import Base, utcnow


class LeaderboardRewardClaim(Base):
    """
    Composite Primary Key: (player_id, claim_type, claim_key)
    - Ensures each payout is recorded once
    - Inserted in the same transaction as the wallet increment
    """

    __tablename__ = "leaderboard_reward_claims"
    __table_args__ = (
        Index("ix_leaderboard_reward_claims_claimed_at", "claimed_at"),
    )

    player_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    claim_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    claim_key: Mapped[str] = mapped_column(String(100), primary_key=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<LeaderboardRewardClaim(player_id={self.player_id}, "
            f"claim_type='{self.claim_type}', claim_key='{self.claim_key}')>"
        )
