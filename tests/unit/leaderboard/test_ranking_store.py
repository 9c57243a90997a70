"""
Unit Tests for RankingStore
===========================

Purpose
-------
Exercise the live ranking store against the in-memory Redis double.

Test Coverage
-------------
- Four-dimension writes in a single MULTI pipeline
- Last-write-wins updates without duplicate members
- Tie-break ordering (score desc, elapsed time asc), including ties at the
  cut-off position
- Region moves, best-score guard, rank lookup, stats and clearing
- Updates without attributes keep the cached profile and region
- A missing elapsed time counts as 0; the tie fetch is capped
- Validation and Redis failure mapping
"""

import pytest

from mathboard.core.config.manager import ConfigManager
from mathboard.core.exceptions import RedisConnectionError
from mathboard.database.models.enums import LeaderboardType
from mathboard.modules.leaderboard.models import PlayerAttributes
from mathboard.modules.leaderboard.ranking_store import RankingStore
from mathboard.modules.shared.exceptions import ValidationError

VN = PlayerAttributes(username="lan", full_name="Lan Nguyen", country="VN", current_level=7)
US = PlayerAttributes(username="joe", full_name="Joe Smith", country="US")


@pytest.fixture
def store(fake_redis):
    return RankingStore(fake_redis)


# ============================================================================
# WRITES
# ============================================================================


@pytest.mark.unit
class TestUpdateScore:
    async def test_writes_all_four_dimensions(self, store, fake_redis):
        written = await store.update_score(1, 1, 300, 42.5, VN)

        assert written is True
        for scope in ("global", "asia"):
            for period in ("alltime", "monthly"):
                key = f"leaderboard:{scope}:1:{period}"
                assert fake_redis.zsets[key] == {"1": 300.0}
                assert fake_redis.zsets[f"{key}:time"] == {"1": 42.5}

    async def test_attribute_hash_and_ttl(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        attributes = fake_redis.hashes["user:1:1"]
        assert attributes["username"] == "lan"
        assert attributes["country"] == "VN"
        assert attributes["region"] == "asia"
        assert attributes["current_level"] == "7"
        assert fake_redis.ttls["user:1:1"] == store.attribute_ttl_seconds

    async def test_writes_go_through_one_transaction(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        transactional = [entry for entry in fake_redis.pipelines if entry[1]]
        assert len(transactional) == 1
        _, _, commands = transactional[0]
        assert commands.count("zadd") == 8
        assert commands[:2] == ["hset", "expire"]

    async def test_last_write_wins_without_duplicates(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)
        await store.update_score(1, 1, 120, 80.0, VN)

        key = "leaderboard:global:1:alltime"
        assert fake_redis.zsets[key] == {"1": 120.0}
        assert await fake_redis.zcard(key) == 1

    async def test_region_move_removes_old_region_entries(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)
        await store.update_score(1, 1, 310, 40.0, US)

        assert "leaderboard:asia:1:alltime" not in fake_redis.zsets
        assert "leaderboard:asia:1:monthly:time" not in fake_redis.zsets
        assert fake_redis.zsets["leaderboard:america:1:alltime"] == {"1": 310.0}
        assert fake_redis.zsets["leaderboard:global:1:alltime"] == {"1": 310.0}

    async def test_missing_attributes_land_in_others(self, store, fake_redis):
        await store.update_score(5, 2, 50, 10.0)

        assert fake_redis.zsets["leaderboard:others:2:monthly"] == {"5": 50.0}

    async def test_update_without_attributes_keeps_cached_profile(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        await store.update_score(1, 1, 120, 9.0)

        assert fake_redis.zsets["leaderboard:asia:1:alltime"] == {"1": 120.0}
        assert "leaderboard:others:1:alltime" not in fake_redis.zsets
        attributes = await store.get_player_attributes(1, 1)
        assert attributes.username == "lan"
        assert attributes.country == "VN"
        assert attributes.current_level == 7

    @pytest.mark.parametrize(
        "difficulty,score,elapsed",
        [(4, 10, 1.0), (0, 10, 1.0), (1, -1, 1.0), (1, 10, -0.5), (1, 10, float("nan")), (True, 10, 1.0)],
    )
    async def test_invalid_input_rejected(self, store, fake_redis, difficulty, score, elapsed):
        with pytest.raises(ValidationError):
            await store.update_score(1, difficulty, score, elapsed, VN)

        assert fake_redis.zsets == {}

    async def test_redis_failure_is_mapped(self, store, fake_redis):
        fake_redis.fail()

        with pytest.raises(RedisConnectionError):
            await store.update_score(1, 1, 300, 42.5, VN)


@pytest.mark.unit
class TestBestScoreGuard:
    async def test_lower_score_not_written(self, store, fake_redis):
        await store.update_score(1, 1, 300, 40.0, VN, keep_best=True)

        written = await store.update_score(1, 1, 200, 10.0, VN, keep_best=True)

        assert written is False
        assert fake_redis.zsets["leaderboard:global:1:alltime"] == {"1": 300.0}

    async def test_equal_score_needs_faster_time(self, store, fake_redis):
        await store.update_score(1, 1, 300, 40.0, VN, keep_best=True)

        assert await store.update_score(1, 1, 300, 45.0, VN, keep_best=True) is False
        assert await store.update_score(1, 1, 300, 35.0, VN, keep_best=True) is True
        assert fake_redis.zsets["leaderboard:global:1:alltime:time"] == {"1": 35.0}

    async def test_guard_applies_per_dimension(self, store, fake_redis):
        await store.update_score(1, 1, 300, 40.0, VN, keep_best=True)
        await store.clear_partition("global", 1, LeaderboardType.MONTHLY)
        await store.clear_partition("asia", 1, LeaderboardType.MONTHLY)

        written = await store.update_score(1, 1, 200, 50.0, VN, keep_best=True)

        assert written is True
        assert fake_redis.zsets["leaderboard:global:1:monthly"] == {"1": 200.0}
        assert fake_redis.zsets["leaderboard:global:1:alltime"] == {"1": 300.0}
        # All-time best is unchanged, so is the cached best
        assert fake_redis.hashes["user:1:1"]["best_score"] == "300"


# ============================================================================
# READS
# ============================================================================


@pytest.mark.unit
class TestGetTopN:
    async def test_orders_by_score_then_time(self, store):
        await store.update_score(1, 1, 200, 50.0, VN)
        await store.update_score(2, 1, 300, 60.0, US)
        await store.update_score(3, 1, 200, 30.0, US)

        entries = await store.get_top_n("global", 1, "alltime", 10)

        assert [entry.player_id for entry in entries] == [2, 3, 1]
        assert [entry.rank_position for entry in entries] == [1, 2, 3]

    async def test_faster_player_wins_tie_at_cutoff(self, store):
        # ZREVRANGE would return player 3 before player 2 for the tied score
        await store.update_score(1, 1, 300, 60.0, VN)
        await store.update_score(2, 1, 200, 30.0, VN)
        await store.update_score(3, 1, 200, 50.0, VN)

        entries = await store.get_top_n("global", 1, "alltime", 2)

        assert [entry.player_id for entry in entries] == [1, 2]

    async def test_missing_time_counts_as_zero(self, store, fake_redis):
        await store.update_score(1, 1, 100, 8.0, VN)
        await store.update_score(2, 1, 100, 5.0, VN)
        del fake_redis.zsets["leaderboard:global:1:alltime:time"]["2"]

        entries = await store.get_top_n("global", 1, "alltime", 2)

        assert [(entry.player_id, entry.elapsed_time) for entry in entries] == [(2, 0.0), (1, 8.0)]
        assert await store.get_player_rank(2, "global", 1, "alltime") == 1
        assert await store.get_player_rank(1, "global", 1, "alltime") == 2

    async def test_tie_fetch_is_capped(self, fake_redis):
        ConfigManager.set_override("leaderboard.max_tie_candidates", 2)
        store = RankingStore(fake_redis)
        for player_id in range(1, 6):
            await store.update_score(player_id, 1, 100, float(player_id), VN)

        entries = await store.get_top_n("global", 1, "alltime", 1)

        _, _, commands = fake_redis.pipelines[-1]
        assert commands.count("zscore") == 2
        assert len(entries) == 1

    async def test_entries_carry_display_attributes(self, store):
        await store.update_score(1, 1, 300, 42.5, VN)

        (entry,) = await store.get_top_n("asia", 1, LeaderboardType.ALL_TIME, 5)

        assert entry.username == "lan"
        assert entry.full_name == "Lan Nguyen"
        assert entry.current_level == 7
        assert entry.region == "asia"
        assert entry.country_flag == "\U0001F1FB\U0001F1F3"
        assert entry.medal == "gold"
        assert entry.month_identifier is None

    async def test_missing_attributes_use_defaults(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)
        del fake_redis.hashes["user:1:1"]

        (entry,) = await store.get_top_n("global", 1, "alltime", 5)

        assert entry.player_id == 1
        assert entry.username == ""
        assert entry.current_level == 1
        assert entry.country is None

    async def test_monthly_entries_labelled_with_month(self, store):
        await store.update_score(1, 1, 300, 42.5, VN)

        (entry,) = await store.get_top_n("global", 1, "monthly", 5, month_identifier="2024-02")

        assert entry.month_identifier == "2024-02"

    async def test_empty_dimension(self, store):
        assert await store.get_top_n("europe", 3, "monthly", 10) == []

    async def test_unknown_scope_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.get_top_n("mars", 1, "alltime", 10)

    async def test_non_positive_n_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.get_top_n("global", 1, "alltime", 0)


@pytest.mark.unit
class TestPlayerRank:
    async def test_rank_uses_same_tie_break(self, store):
        await store.update_score(1, 1, 300, 60.0, VN)
        await store.update_score(2, 1, 200, 30.0, VN)
        await store.update_score(3, 1, 200, 50.0, VN)

        assert await store.get_player_rank(1, "global", 1, "alltime") == 1
        assert await store.get_player_rank(2, "global", 1, "alltime") == 2
        assert await store.get_player_rank(3, "global", 1, "alltime") == 3

    async def test_unranked_player(self, store):
        assert await store.get_player_rank(99, "global", 1, "alltime") is None


@pytest.mark.unit
class TestStatsAndClearing:
    async def test_stats_count_each_dimension(self, store):
        await store.update_score(1, 1, 300, 42.5, VN)
        await store.update_score(2, 1, 100, 42.5, US)
        await store.clear_partition("global", 1, "monthly")

        stats = await store.get_stats()

        assert stats["difficulty_1"]["global"] == {"alltime_players": 2, "monthly_players": 0}
        assert stats["difficulty_1"]["asia"] == {"alltime_players": 1, "monthly_players": 1}
        assert stats["difficulty_3"]["others"] == {"alltime_players": 0, "monthly_players": 0}

    async def test_clear_partition_touches_one_dimension(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        removed = await store.clear_partition("asia", 1, "monthly")

        assert removed == 2
        assert "leaderboard:asia:1:monthly" not in fake_redis.zsets
        assert "leaderboard:asia:1:alltime" in fake_redis.zsets
        assert "leaderboard:global:1:monthly" in fake_redis.zsets

    async def test_clear_pattern_includes_time_sets(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        await store.clear("leaderboard:global:1:monthly")

        assert "leaderboard:global:1:monthly:time" not in fake_redis.zsets

    async def test_clear_all(self, store, fake_redis):
        await store.update_score(1, 1, 300, 42.5, VN)

        removed = await store.clear_all()

        assert removed == 9
        assert fake_redis.keys() == []
