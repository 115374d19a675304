"""SQLAlchemy models for the persisted ledger.

Token amounts are unsigned integers that can exceed 64 bits, so every amount
column is decimal text and converted with int()/str() at the repository
boundary.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.escrow.core.database import Base

AMOUNT = String(80)


class TokenModel(Base):
    """Registered token with its settlement reserve and open exposure."""

    __tablename__ = "tokens"

    symbol: Mapped[str] = mapped_column(String(32), primary_key=True)
    token_contract: Mapped[str] = mapped_column(String(128), nullable=False)
    settlement: Mapped[str] = mapped_column(AMOUNT, nullable=False, default="0")
    open: Mapped[str] = mapped_column(AMOUNT, nullable=False, default="0")
    # Registration order; balances are reported in this order
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )


class DealModel(Base):
    """One deal, keyed by lowercased owner address and per-owner id."""

    __tablename__ = "deals"

    owner_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    deal_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    terms: Mapped[str] = mapped_column(AMOUNT, nullable=False)
    aux_param: Mapped[str] = mapped_column(AMOUNT, nullable=False)
    created_at: Mapped[str] = mapped_column(AMOUNT, nullable=False)
    token: Mapped[str] = mapped_column(String(32), nullable=False)
    investment: Mapped[str] = mapped_column(AMOUNT, nullable=False)
    payout: Mapped[str] = mapped_column(AMOUNT, nullable=False, default="0")
    status: Mapped[int] = mapped_column(Integer, nullable=False)
    confirm_aux_param: Mapped[str | None] = mapped_column(AMOUNT, nullable=True)
    close_aux_param: Mapped[str | None] = mapped_column(AMOUNT, nullable=True)
    paid_out: Mapped[str] = mapped_column(AMOUNT, nullable=False, default="0")


class RoleGrantModel(Base):
    """Membership of one account in one role."""

    __tablename__ = "role_grants"

    role: Mapped[str] = mapped_column(String(32), primary_key=True)
    account: Mapped[str] = mapped_column(String(128), primary_key=True)


class LedgerControlModel(Base):
    """Single-row table holding the pause flag."""

    __tablename__ = "ledger_control"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class LedgerEventModel(Base):
    """Committed event, in log order."""

    __tablename__ = "ledger_events"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    args: Mapped[dict] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
