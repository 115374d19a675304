"""Batch settlement of confirmed deals into winner and loser outcomes.

Entries are processed winners first, then losers, each list in the order the
caller supplied; that order is visible in the emitted SettledDeal events.

Per-entry outcomes are independent. An entry that cannot be settled right now
is skipped without failing the call:

- terminal deal (already SETTLED, CLOSED or REJECTED): silent no-op, which is
  what makes re-submitting an overlapping batch safe
- winner whose payout exceeds the token's settlement reserve: stays CONFIRMED
  and can be retried after more settlement funds are deposited
- deal that is not CONFIRMED (never funded, PENDING, CLOSE_REQUESTED)

A winner pays ``payout`` from the reserve and releases its investment from
open exposure. A loser only releases its exposure; the forfeited investment
stays in the escrow's real balance until reconciliation folds it into the
reserve.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.deals.registry import DealRegistry
from src.escrow.deals.schemas import Deal, DealRef, DealStatus
from src.escrow.events.schemas import SettledDeal
from src.escrow.ledger.tokens import TokenLedger

logger = structlog.get_logger(__name__)


class SkipReason(str, Enum):
    """Why a settlement entry was left untouched."""

    TERMINAL = "terminal"
    INSUFFICIENT_SETTLEMENT = "insufficient_settlement"
    NOT_CONFIRMED = "not_confirmed"


class SkippedEntry(BaseModel):
    ref: DealRef
    won: bool
    reason: SkipReason


class SettlementReport(BaseModel):
    """Outcome of one settle_deals call."""

    settled: list[SettledDeal] = Field(default_factory=list)
    skipped: list[SkippedEntry] = Field(default_factory=list)

    @property
    def retryable(self) -> list[DealRef]:
        """Winners held back by a thin reserve; resubmit after a deposit."""
        return [s.ref for s in self.skipped if s.reason == SkipReason.INSUFFICIENT_SETTLEMENT]


def as_refs(entries: Iterable[DealRef | tuple[str, int] | dict]) -> list[DealRef]:
    """Normalize tuples and dicts into DealRef instances."""
    refs = []
    for entry in entries:
        if isinstance(entry, DealRef):
            refs.append(entry)
        elif isinstance(entry, dict):
            refs.append(DealRef.model_validate(entry))
        else:
            owner, deal_id = entry
            refs.append(DealRef(owner=owner, deal_id=deal_id))
    return refs


class SettlementEngine:
    """Resolves batches of deals against the token ledger."""

    def __init__(self, registry: DealRegistry, ledger: TokenLedger, uow: UnitOfWork) -> None:
        self._registry = registry
        self._ledger = ledger
        self._uow = uow

    def settle_deals(self, winners: Sequence[DealRef], losers: Sequence[DealRef]) -> SettlementReport:
        report = SettlementReport()
        for ref in winners:
            self._settle_one(ref, won=True, report=report)
        for ref in losers:
            self._settle_one(ref, won=False, report=report)

        logger.info(
            "settlement.batch_completed",
            winners=len(winners),
            losers=len(losers),
            settled=len(report.settled),
            skipped=len(report.skipped),
        )
        return report

    def _settle_one(self, ref: DealRef, won: bool, report: SettlementReport) -> None:
        deal = self._registry.find(ref.owner, ref.deal_id)
        if deal is None or deal.status != DealStatus.CONFIRMED:
            if deal is not None and deal.is_terminal:
                self._skip(report, ref, won, SkipReason.TERMINAL)
            else:
                logger.warning(
                    "settlement.entry_not_confirmed",
                    owner=ref.owner,
                    deal_id=ref.deal_id,
                    status=(deal.status.name if deal is not None else DealStatus.NONE.name),
                )
                self._skip(report, ref, won, SkipReason.NOT_CONFIRMED)
            return

        if won:
            self._settle_winner(deal, ref, report)
        else:
            self._settle_loser(deal, report)

    def _settle_winner(self, deal: Deal, ref: DealRef, report: SettlementReport) -> None:
        entry = self._ledger.get_token(deal.token)
        if entry.settlement < deal.payout:
            logger.info(
                "settlement.winner_deferred",
                owner=deal.owner,
                deal_id=deal.deal_id,
                payout=deal.payout,
                settlement=entry.settlement,
            )
            self._skip(report, ref, True, SkipReason.INSUFFICIENT_SETTLEMENT)
            return

        self._ledger.debit_settlement(deal.token, deal.payout)
        self._ledger.release_exposure(deal.token, deal.investment)
        self._ledger.pay_out(deal.token, deal.owner, deal.payout)
        self._registry.settle(deal, deal.payout)
        self._record(report, SettledDeal(owner=deal.owner, deal_id=deal.deal_id, payout=deal.payout, won=True))

    def _settle_loser(self, deal: Deal, report: SettlementReport) -> None:
        self._ledger.release_exposure(deal.token, deal.investment)
        self._registry.settle(deal, 0)
        self._record(report, SettledDeal(owner=deal.owner, deal_id=deal.deal_id, payout=0, won=False))

    def _record(self, report: SettlementReport, event: SettledDeal) -> None:
        self._uow.emit(event)
        report.settled.append(event)

    @staticmethod
    def _skip(report: SettlementReport, ref: DealRef, won: bool, reason: SkipReason) -> None:
        report.skipped.append(SkippedEntry(ref=ref, won=won, reason=reason))
