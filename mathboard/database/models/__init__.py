"""
Database Models Package
=======================

SQLAlchemy ORM models for Mathboard. Schema only; importing this package
registers every table on `Base.metadata`.

- statistics: per-difficulty player results (source of truth for scores)
- leaderboard: durable leaderboard snapshots
- wallet: player soft-currency balances
- reward_claim: idempotency ledger for leaderboard payouts
- enums: shared enumerations
"""

from mathboard.core.database.base import Base

from .enums import LeaderboardType, RewardClaimType
from .leaderboard import LeaderboardSnapshot
from .reward_claim import LeaderboardRewardClaim
from .statistics import PlayerStatistics
from .wallet import PlayerWallet

__all__ = [
    "Base",
    "LeaderboardType",
    "RewardClaimType",
    "LeaderboardSnapshot",
    "LeaderboardRewardClaim",
    "PlayerStatistics",
    "PlayerWallet",
]
