"""
Unit Tests for RewardDistributor and DatabaseCurrencyLedger
===========================================================

Test Coverage
-------------
- Reward table from configuration (1000 / 500 / 200)
- Exactly-once payout per (player, month, difficulty) claim
- Independent payouts: one failure never blocks the others, whatever the
  domain error
- Wallet creation and increments on SQLite
"""

import pytest
from sqlalchemy import select

from mathboard.database.models.reward_claim import LeaderboardRewardClaim
from mathboard.database.models.wallet import PlayerWallet
from mathboard.modules.leaderboard.models import RankedEntry
from mathboard.modules.leaderboard.rewards import (
    DatabaseCurrencyLedger,
    RewardDistributor,
    monthly_claim_key,
)
from mathboard.modules.shared.exceptions import (
    DuplicateRewardError,
    NotFoundError,
    RewardAwardError,
    ValidationError,
)


def _top(*scores: int):
    return [
        RankedEntry(rank_position=rank, player_id=100 + rank, score=score, elapsed_time=10.0, username=f"p{rank}")
        for rank, score in enumerate(scores, start=1)
    ]


# ============================================================================
# DISTRIBUTOR (mocked ledger)
# ============================================================================


@pytest.mark.unit
class TestRewardDistributor:
    def test_reward_table_from_config(self):
        assert RewardDistributor(ledger=object()).reward_table == {1: 1000, 2: 500, 3: 200}

    async def test_pays_top_three(self, mocker, event_recorder):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(side_effect=[1000, 500, 200])
        distributor = RewardDistributor(ledger=ledger, event_bus=event_recorder)

        outcomes = await distributor.distribute(_top(300, 200, 100), 1, "2024-02")

        assert [(o.success, o.rank, o.amount) for o in outcomes] == [
            (True, 1, 1000),
            (True, 2, 500),
            (True, 3, 200),
        ]
        ledger.credit.assert_any_await(101, 1000, claim_type="monthly_leaderboard", claim_key="2024-02:d1")
        assert event_recorder.names() == ["leaderboard.reward_awarded"] * 3

    async def test_failure_does_not_block_other_ranks(self, mocker):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(side_effect=[RuntimeError("db down"), 500, 200])
        distributor = RewardDistributor(ledger=ledger)

        outcomes = await distributor.distribute(_top(300, 200, 100), 1, "2024-02")

        assert [o.success for o in outcomes] == [False, True, True]
        assert outcomes[0].error_type == "RewardAwardError"
        assert "db down" in outcomes[0].error

    async def test_duplicate_claim_reported(self, mocker):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(
            side_effect=DuplicateRewardError(101, "monthly_leaderboard", "2024-02:d1")
        )

        (outcome,) = await RewardDistributor(ledger=ledger).distribute(_top(300), 1, "2024-02")

        assert outcome.success is False
        assert outcome.error_type == "DuplicateRewardError"

    async def test_other_domain_errors_become_failed_outcomes(self, mocker):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(side_effect=[NotFoundError("wallet", 101), 500])

        outcomes = await RewardDistributor(ledger=ledger).distribute(_top(300, 200), 1, "2024-02")

        assert [o.success for o in outcomes] == [False, True]
        assert outcomes[0].error_type == "NotFoundError"
        assert "wallet" in outcomes[0].error

    async def test_ranks_without_reward_are_skipped(self, mocker):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(return_value=1)
        entries = _top(300, 200, 100, 50)

        outcomes = await RewardDistributor(ledger=ledger).distribute(entries, 1, "2024-02")

        assert len(outcomes) == 3
        assert ledger.credit.await_count == 3

    async def test_award_rejects_non_positive_amount(self, mocker):
        distributor = RewardDistributor(ledger=mocker.Mock())

        with pytest.raises(ValidationError):
            await distributor.award(1, 0, claim_key="2024-02:d1")

    async def test_award_wraps_ledger_errors(self, mocker):
        ledger = mocker.Mock()
        ledger.credit = mocker.AsyncMock(side_effect=ConnectionError("reset"))

        with pytest.raises(RewardAwardError):
            await RewardDistributor(ledger=ledger).award(1, 100, claim_key="2024-02:d1")

    def test_claim_key_per_month_and_difficulty(self):
        assert monthly_claim_key("2024-02", 3) == "2024-02:d3"


# ============================================================================
# LEDGER (SQLite)
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestDatabaseCurrencyLedger:
    async def test_first_credit_creates_wallet(self, database):
        ledger = DatabaseCurrencyLedger(database)

        balance = await ledger.credit(7, 1000, claim_type="monthly_leaderboard", claim_key="2024-02:d1")

        assert balance == 1000

    async def test_credits_accumulate_across_claims(self, database):
        ledger = DatabaseCurrencyLedger(database)

        await ledger.credit(7, 1000, claim_type="monthly_leaderboard", claim_key="2024-01:d1")
        balance = await ledger.credit(7, 500, claim_type="monthly_leaderboard", claim_key="2024-02:d1")

        assert balance == 1500

    async def test_same_claim_paid_once(self, database):
        ledger = DatabaseCurrencyLedger(database)
        await ledger.credit(7, 1000, claim_type="monthly_leaderboard", claim_key="2024-02:d1")

        with pytest.raises(DuplicateRewardError):
            await ledger.credit(7, 1000, claim_type="monthly_leaderboard", claim_key="2024-02:d1")

        async with database.get_session() as session:
            wallet = (await session.execute(select(PlayerWallet))).scalar_one()
            claims = (await session.execute(select(LeaderboardRewardClaim))).scalars().all()
        assert wallet.coins == 1000
        assert len(claims) == 1

    async def test_distributor_over_real_ledger(self, database):
        distributor = RewardDistributor(ledger=DatabaseCurrencyLedger(database))

        first = await distributor.distribute(_top(300, 200, 100), 1, "2024-02")
        second = await distributor.distribute(_top(300, 200, 100), 1, "2024-02")

        assert [o.new_balance for o in first] == [1000, 500, 200]
        assert all(o.error_type == "DuplicateRewardError" for o in second)
