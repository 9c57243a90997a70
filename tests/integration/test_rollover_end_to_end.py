"""
Integration Tests for the Leaderboard Pipeline
==============================================

Purpose
-------
Drive the full application wiring against real PostgreSQL and Redis:
live writes through MULTI/EXEC, ranking with tie-breaks, monthly rollover
with exactly-once rewards, and historical reads from snapshots.

Test Coverage
-------------
- Atomic four-dimension writes on a real Redis server
- Tie-break ordering with ZCOUNT range bounds
- Rollover: rewards, snapshot partitions, clearing, idempotent re-run
- Historical read after rollover
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from mathboard.database.models.statistics import PlayerStatistics
from mathboard.database.models.wallet import PlayerWallet
from mathboard.main import build_application
from mathboard.modules.leaderboard.models import BackupStatus, PlayerAttributes

MONTH = "2024-02"
VN = PlayerAttributes(username="lan", full_name="Lan Nguyen", country="VN", current_level=4)
US = PlayerAttributes(username="joe", full_name="Joe Smith", country="US")


@pytest.fixture
def app(live_database, live_redis, event_recorder):
    return build_application(event_bus=event_recorder)


async def _seed_statistics(database, *entries):
    async with database.get_transaction() as session:
        for player_id, score, elapsed in entries:
            session.add(
                PlayerStatistics(
                    player_id=player_id,
                    difficulty_level=1,
                    games_played=5,
                    best_score=score,
                    best_score_time=elapsed,
                    best_score_achieved_at=datetime.now(timezone.utc),
                    total_score=score * 5,
                )
            )


@pytest.mark.integration
@pytest.mark.database
class TestLiveRankings:
    async def test_write_and_rank(self, app, live_redis):
        service = app.leaderboard
        await service.record_game_result(1, 1, 200, 50.0, VN)
        await service.record_game_result(2, 1, 300, 60.0, US)
        await service.record_game_result(3, 1, 200, 30.0, US)

        page = await service.get_leaderboard("global", 1, "alltime")

        assert page["source"] == "live"
        assert [entry["player_id"] for entry in page["entries"]] == [2, 3, 1]
        assert await service.get_player_rank(1) == 3
        assert await service.get_player_rank(3, "america") == 2
        assert await live_redis.zcard("leaderboard:asia:1:monthly:time") == 1

    async def test_attribute_hash_has_ttl(self, app, live_redis):
        await app.leaderboard.record_game_result(1, 1, 200, 50.0, VN)

        assert await live_redis.ttl("user:1:1") > 0
        assert (await live_redis.hgetall("user:1:1"))["region"] == "asia"


@pytest.mark.integration
@pytest.mark.database
class TestMonthlyRolloverEndToEnd:
    async def test_rollover_then_history(self, app, live_database, live_redis):
        await _seed_statistics(live_database, (1, 300, 40.0), (2, 200, 30.0), (3, 100, 20.0))
        for player_id, score, elapsed in ((1, 300, 40.0), (2, 200, 30.0), (3, 100, 20.0)):
            await app.leaderboard.record_game_result(player_id, 1, score, elapsed, VN)

        result = await app.leaderboard.trigger_rollover(MONTH)

        assert result.success is True
        assert result.backup.status is BackupStatus.SUCCESS
        assert await live_redis.zcard("leaderboard:global:1:monthly") == 0
        assert await live_redis.zcard("leaderboard:global:1:alltime") == 3

        async with live_database.get_session() as session:
            wallets = (await session.execute(select(PlayerWallet))).scalars().all()
        assert {wallet.player_id: wallet.coins for wallet in wallets} == {1: 1000, 2: 500, 3: 200}

        page = await app.leaderboard.get_leaderboard("asia", 1, "monthly", month_identifier=MONTH)
        assert page["source"] == "snapshot"
        assert [entry["rank_position"] for entry in page["entries"]] == [1, 2, 3]
        assert await app.leaderboard.list_available_months() == [MONTH]

    async def test_rerun_pays_nothing_more(self, app, live_database):
        await _seed_statistics(live_database, (1, 300, 40.0))
        await app.leaderboard.record_game_result(1, 1, 300, 40.0, VN)
        await app.leaderboard.backup_now(include_rewards=True, month_identifier=MONTH)

        second = await app.leaderboard.backup_now(include_rewards=True, month_identifier=MONTH)

        assert second.status is BackupStatus.PARTIAL
        async with live_database.get_session() as session:
            wallet = (await session.execute(select(PlayerWallet))).scalar_one()
        assert wallet.coins == 1000
