"""Pydantic models for per-token bookkeeping."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenEntry(BaseModel):
    """Stored bookkeeping for one registered token.

    The real balance is not stored: it is read live from the asset gateway.
    """

    symbol: str
    token_contract: str
    settlement: int = Field(default=0, ge=0)
    open: int = Field(default=0, ge=0)


class TokenBalance(BaseModel):
    """One row of ``get_balances()``: live balance next to the bookkeeping."""

    token: str
    token_contract: str
    balance: int
    settlement: int
    open: int

    @property
    def drift(self) -> int:
        """Real balance minus what the bookkeeping accounts for (negative = shortfall)."""
        return self.balance - self.settlement - self.open


class SettlementAdjustment(BaseModel):
    """A reserve change made by reconciliation."""

    token: str
    previous: int
    settlement: int
