"""
Leaderboard constants.

Defaults only; every value here can be overridden from `config/*.yaml`
through ConfigManager (see the key named next to each constant).
"""

from __future__ import annotations

from typing import Dict, Tuple

GLOBAL_SCOPE = "global"
FALLBACK_REGION = "others"

# leaderboard.region_mapping
DEFAULT_REGION_MAPPING: Dict[str, Tuple[str, ...]] = {
    "asia": ("VN", "JP", "KR", "CN", "TH", "SG", "MY", "ID", "PH", "IN"),
    "america": ("US", "CA", "BR", "MX", "AR", "CL", "CO", "PE"),
    "europe": ("DE", "FR", "UK", "IT", "ES", "NL", "SE", "NO"),
    "oceania": ("AU", "NZ", "FJ"),
    "africa": ("ZA", "NG", "EG", "KE"),
}

# leaderboard.regions
DEFAULT_REGIONS: Tuple[str, ...] = (
    GLOBAL_SCOPE,
    "asia",
    "america",
    "europe",
    "oceania",
    "africa",
    FALLBACK_REGION,
)

# leaderboard.difficulty_levels (1=Easy, 2=Medium, 3=Hard)
DEFAULT_DIFFICULTY_LEVELS: Tuple[int, ...] = (1, 2, 3)

# rewards.monthly: rank -> coins, global monthly ranking only
DEFAULT_MONTHLY_REWARDS: Dict[int, int] = {1: 1000, 2: 500, 3: 200}

# leaderboard.snapshot_limit
DEFAULT_SNAPSHOT_LIMIT = 500

# leaderboard.attribute_ttl_seconds (365 days)
DEFAULT_ATTRIBUTE_TTL_SECONDS = 365 * 24 * 60 * 60

# leaderboard.max_page_size
DEFAULT_MAX_PAGE_SIZE = 500

# leaderboard.max_tie_candidates: members tied with the N-th score fetched per top-N read
DEFAULT_MAX_TIE_CANDIDATES = 1000

# rollover.*
DEFAULT_ROLLOVER_CRON = "0 2 1 * *"
DEFAULT_ROLLOVER_TIMEZONE = "UTC"
DEFAULT_PARTITION_TIMEOUT_SECONDS = 60.0

MEDALS: Dict[int, str] = {1: "gold", 2: "silver", 3: "bronze"}

# Event names
EVENT_SCORE_RECORDED = "leaderboard.score_recorded"
EVENT_REWARD_AWARDED = "leaderboard.reward_awarded"
EVENT_ROLLOVER_COMPLETED = "leaderboard.rollover_completed"
EVENT_ROLLOVER_FAILED = "leaderboard.rollover_failed"
