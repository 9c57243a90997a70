"""
Database Model Enums
====================

Lightweight enumerations for leaderboard and reward tables.

These are declarative schema helpers; ranking rules live in
`mathboard.modules.leaderboard`.
"""

from __future__ import annotations

import enum


class LeaderboardType(str, enum.Enum):
    """
    Ranking period of a leaderboard.

    The value doubles as the period segment of ranking-store keys
    (`leaderboard:{scope}:{difficulty}:{period}`) and as the
    `leaderboard_type` column of snapshot rows.
    """

    ALL_TIME = "alltime"
    MONTHLY = "monthly"


class RewardClaimType(str, enum.Enum):
    """Kinds of one-time payouts guarded by the reward claim ledger."""

    MONTHLY_LEADERBOARD = "monthly_leaderboard"
