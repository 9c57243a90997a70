"""
PlayerWallet: soft-currency balance per player.
Schema only; mutated through `DatabaseCurrencyLedger`.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import Mapped, mapped_column

from mathboard.core.database.base import Base, IdMixin, TimestampMixin


class PlayerWallet(Base, IdMixin, TimestampMixin):
    __tablename__ = "player_wallets"

    player_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True, index=True)
    coins: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Incremented on every balance change",
    )
