"""Pydantic data models for the deal registry.

Defines the deal status enum (whose integer codes appear in StatusError
messages), the Deal record, and the (owner, deal_id) reference used by batch
settlement.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, Field


class DealStatus(IntEnum):
    """Lifecycle status of a deal. Codes are externally visible."""

    NONE = 0
    PENDING = 1
    CONFIRMED = 2
    CLOSE_REQUESTED = 3
    SETTLED = 4
    CLOSED = 5
    REJECTED = 6


TERMINAL_STATUSES: frozenset[DealStatus] = frozenset(
    {DealStatus.CLOSED, DealStatus.SETTLED, DealStatus.REJECTED}
)


class Deal(BaseModel):
    """A funded escrow deal.

    ``terms``, ``aux_param``, ``confirm_aux_param`` and ``close_aux_param`` are
    opaque numbers stored exactly as supplied. ``paid_out`` records what was
    actually sent to the owner when the deal resolved.
    """

    owner: str
    deal_id: int = Field(ge=1)
    label: str
    terms: int = Field(ge=0)
    aux_param: int = Field(ge=0)
    created_at: int = Field(ge=0)
    token: str
    investment: int = Field(ge=0)
    payout: int = Field(default=0, ge=0)
    status: DealStatus = DealStatus.PENDING
    confirm_aux_param: int | None = None
    close_aux_param: int | None = None
    paid_out: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def ref(self) -> DealRef:
        return DealRef(owner=self.owner, deal_id=self.deal_id)


class DealRef(BaseModel):
    """Reference to a deal by owner address and per-owner sequence id."""

    owner: str
    deal_id: int

    @property
    def key(self) -> tuple[str, int]:
        return (self.owner.lower(), self.deal_id)
