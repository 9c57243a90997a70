"""
Leaderboard rewards.

Purpose
-------
Pay the period rewards of the global monthly ranking (rank 1/2/3 ->
1000/500/200 coins by default) exactly once per player, month and
difficulty.

Responsibilities
----------------
- `RewardDistributor.award`: credit one player through a CurrencyLedger
  (atomic increment, no retries)
- `RewardDistributor.distribute`: fold over a top-3 snapshot, producing one
  `RewardOutcome` per rank; a failing payout never stops the others
- `DatabaseCurrencyLedger`: insert a claim row (ON CONFLICT DO NOTHING) and
  increment `player_wallets.coins` in the same transaction

Configuration Keys
------------------
- rewards.monthly: {rank: amount}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from mathboard.core.config.manager import ConfigManager
from mathboard.core.database.service import DatabaseService
from mathboard.core.logging.logger import get_logger
from mathboard.database.models.enums import RewardClaimType
from mathboard.database.models.reward_claim import LeaderboardRewardClaim
from mathboard.database.models.wallet import PlayerWallet
from mathboard.modules.leaderboard.constants import DEFAULT_MONTHLY_REWARDS, EVENT_REWARD_AWARDED
from mathboard.modules.leaderboard.models import RankedEntry, RewardOutcome
from mathboard.modules.shared.base_repository import BaseRepository
from mathboard.modules.shared.base_service import BaseService
from mathboard.modules.shared.exceptions import (
    DuplicateRewardError,
    MathboardDomainException,
    RewardAwardError,
)

logger = get_logger(__name__)


def monthly_claim_key(month_identifier: Optional[str], difficulty: int) -> str:
    return f"{month_identifier or 'alltime'}:d{difficulty}"


# ============================================================================
# Currency Ledger
# ============================================================================


class CurrencyLedger(Protocol):
    """Account mutator used by RewardDistributor."""

    async def credit(
        self,
        player_id: int,
        amount: int,
        *,
        claim_type: str,
        claim_key: str,
    ) -> int:
        """Atomically add `amount`; return the new balance.

        Raises DuplicateRewardError if the claim was already paid.
        """
        ...


class WalletRepository(BaseRepository[PlayerWallet]):
    pass


class DatabaseCurrencyLedger:
    """CurrencyLedger over `player_wallets` guarded by `leaderboard_reward_claims`."""

    def __init__(self, database: Any = DatabaseService) -> None:
        self._database = database
        self._wallets = WalletRepository(PlayerWallet, get_logger(f"{__name__}.WalletRepository"))

    async def credit(
        self,
        player_id: int,
        amount: int,
        *,
        claim_type: str,
        claim_key: str,
    ) -> int:
        async with self._database.get_transaction() as session:
            insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
            claim_stmt = insert(LeaderboardRewardClaim).values(
                player_id=player_id,
                claim_type=claim_type,
                claim_key=claim_key,
                amount=amount,
            ).on_conflict_do_nothing(index_elements=["player_id", "claim_type", "claim_key"])
            result = await session.execute(claim_stmt)

            # No row inserted: this payout already happened
            if result.rowcount == 0:
                raise DuplicateRewardError(player_id, claim_type, claim_key)

            wallet = await self._wallets.find_one_where(
                session,
                PlayerWallet.player_id == player_id,
                for_update=True,
            )
            if wallet is None:
                wallet = PlayerWallet(player_id=player_id, coins=amount, version=1)
                session.add(wallet)
            else:
                wallet.coins = wallet.coins + amount
                wallet.version = wallet.version + 1

            await session.flush()
            return int(wallet.coins)


# ============================================================================
# RewardDistributor
# ============================================================================


class RewardDistributor(BaseService):
    """
    Award leaderboard rewards.

    Public Methods
    --------------
    - award() -> credit one player, returns the new balance
    - distribute() -> pay a ranked top list, returns one outcome per rank
    """

    def __init__(
        self,
        ledger: Optional[CurrencyLedger] = None,
        config_manager: Any = ConfigManager,
        event_bus: Any = None,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(f"{__name__}.RewardDistributor"))
        self._ledger: CurrencyLedger = ledger or DatabaseCurrencyLedger()

    @property
    def reward_table(self) -> Dict[int, int]:
        raw = self.get_config("rewards.monthly", DEFAULT_MONTHLY_REWARDS)
        return {int(rank): int(amount) for rank, amount in dict(raw).items()}

    async def award(
        self,
        player_id: int,
        amount: int,
        *,
        claim_type: str = RewardClaimType.MONTHLY_LEADERBOARD.value,
        claim_key: str,
    ) -> int:
        """
        Credit `amount` to `player_id` exactly once for `claim_key`.

        Raises
        ------
        ValidationError
            If amount is not a positive integer.
        DuplicateRewardError
            If the claim was already paid.
        RewardAwardError
            If the ledger fails for any other reason.
        """
        self.validate_positive_int(amount, "amount")

        try:
            new_balance = await self._ledger.credit(
                player_id,
                amount,
                claim_type=claim_type,
                claim_key=claim_key,
            )
        except MathboardDomainException:
            raise
        except Exception as exc:
            # Driver, circuit breaker or ledger-specific failure
            raise RewardAwardError(player_id, amount, f"{type(exc).__name__}: {exc}") from exc

        self.log_operation(
            "award",
            player_id=player_id,
            amount=amount,
            claim_key=claim_key,
            new_balance=new_balance,
        )
        return new_balance

    async def distribute(
        self,
        top_entries: Sequence[RankedEntry],
        difficulty: int,
        month_identifier: Optional[str],
    ) -> List[RewardOutcome]:
        """
        Pay every rank of `top_entries` that has a configured reward.

        Each payout is attempted independently; failures become
        `RewardOutcome(success=False, ...)` instead of exceptions.
        """
        table = self.reward_table
        claim_key = monthly_claim_key(month_identifier, difficulty)
        outcomes: List[RewardOutcome] = []

        for entry in top_entries:
            amount = table.get(entry.rank_position)
            if not amount:
                continue

            base = dict(
                player_id=entry.player_id,
                rank=entry.rank_position,
                difficulty=difficulty,
                amount=amount,
                score=entry.score,
                month_identifier=month_identifier,
                username=entry.username,
            )
            try:
                new_balance = await self.award(entry.player_id, amount, claim_key=claim_key)
            except MathboardDomainException as exc:
                self.log_error(
                    "distribute",
                    exc,
                    player_id=entry.player_id,
                    rank=entry.rank_position,
                    amount=amount,
                    difficulty=difficulty,
                    month_identifier=month_identifier,
                )
                outcomes.append(
                    RewardOutcome(success=False, error=str(exc), error_type=type(exc).__name__, **base)
                )
                continue

            outcomes.append(RewardOutcome(success=True, new_balance=new_balance, **base))
            await self.emit_event(EVENT_REWARD_AWARDED, {**base, "new_balance": new_balance})

        return outcomes
