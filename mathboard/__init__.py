"""
Mathboard: leaderboard ranking and persistence engine for the math mini-game.

Live rankings are kept in Redis sorted sets, snapshotted into PostgreSQL at
each monthly rollover, and top players are paid their period rewards.
"""

__version__ = "1.0.0"
