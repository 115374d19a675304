"""Deal registry -- deal records keyed by (owner, deal_id) and the status machine.

Deals live in an arena: ``_deals`` maps ``(owner_key, deal_id)`` to the Deal
record and ``_sequences`` maps ``owner_key`` to the last id handed out, so ids
per owner are the contiguous range 1..N. Owner keys are lowercased
addresses. A key that was never funded reports status NONE, which is what
makes "incorrect status: 0" the error for unknown deals.

Each operation checks its precondition through ``require_status``, applies
the ledger effects on TokenLedger, queues asset movements and emits its
event, all on the shared unit of work.
"""

from __future__ import annotations

import structlog

from src.escrow.core.errors import DealNotFoundError, InsufficientFundsError, require_amount
from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.deals.schemas import Deal, DealStatus
from src.escrow.deals.transitions import require_status, validate_transition
from src.escrow.events.schemas import (
    CloseRejected,
    CloseRequested,
    ClosedDeal,
    ConfirmedDeal,
    NewDeal,
    RefundedDeal,
    RejectedDeal,
)
from src.escrow.ledger.tokens import TokenLedger

logger = structlog.get_logger(__name__)


def _owner_key(owner: str) -> str:
    return owner.lower()


class DealRegistry:
    """Deal records and lifecycle operations.

    Args:
        ledger: Token ledger whose exposure and reserve counters deals move.
        uow: Unit of work shared with the other ledger components.
        refund_on_reject: Return the investment to the owner when a deal is
            rejected. Off by default; the investment then stays in the
            escrow's real balance until reconciliation.
    """

    def __init__(self, ledger: TokenLedger, uow: UnitOfWork, refund_on_reject: bool = False) -> None:
        self._ledger = ledger
        self._uow = uow
        self._refund_on_reject = refund_on_reject
        self._deals: dict[tuple[str, int], Deal] = {}
        self._sequences: dict[str, int] = {}
        uow.track("deals", self._deals)

    # ── Reads ───────────────────────────────────────────────────────────────

    def status_of(self, owner: str, deal_id: int) -> DealStatus:
        deal = self._deals.get((_owner_key(owner), deal_id))
        return deal.status if deal is not None else DealStatus.NONE

    def find(self, owner: str, deal_id: int) -> Deal | None:
        return self._deals.get((_owner_key(owner), deal_id))

    def get_deal(self, owner: str, deal_id: int) -> Deal:
        deal = self.find(owner, deal_id)
        if deal is None:
            raise DealNotFoundError(owner, deal_id)
        return deal

    def list_deals(self, owner: str) -> list[Deal]:
        key = _owner_key(owner)
        last = self._sequences.get(key, 0)
        return [self._deals[(key, deal_id)] for deal_id in range(1, last + 1)]

    def all_deals(self) -> list[Deal]:
        return list(self._deals.values())

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def fund_deal(
        self,
        depositor: str,
        label: str,
        terms: int,
        aux_param: int,
        created_at: int,
        token: str,
        investment: int,
    ) -> Deal:
        """Create a PENDING deal for ``depositor`` and pull its investment."""
        require_amount("investment", investment)
        for name, value in (("terms", terms), ("aux_param", aux_param), ("created_at", created_at)):
            require_amount(name, value)
        self._ledger.get_token(token)

        key = _owner_key(depositor)
        deal_id = self._sequences.get(key, 0) + 1
        deal = Deal(
            owner=depositor,
            deal_id=deal_id,
            label=label,
            terms=terms,
            aux_param=aux_param,
            created_at=created_at,
            token=token,
            investment=investment,
        )

        self._uow.remember(self._sequences, key)
        self._uow.remember(self._deals, (key, deal_id))
        self._sequences[key] = deal_id
        self._deals[(key, deal_id)] = deal
        self._ledger.add_exposure(token, investment)
        self._ledger.pull_in(token, depositor, investment)

        self._uow.emit(
            NewDeal(
                depositor=depositor,
                deal_id=deal_id,
                label=label,
                investment=investment,
                terms=terms,
                created_at=created_at,
                aux_param=aux_param,
                token=token,
            )
        )
        logger.info("deal.funded", owner=depositor, deal_id=deal_id, token=token, investment=investment)
        return deal

    def confirm_deal(self, owner: str, deal_id: int, payout: int, aux_param: int) -> Deal:
        """Attach the payout obligation to a PENDING deal."""
        require_amount("payout", payout)
        require_amount("aux_param", aux_param)
        deal = self._edit(owner, deal_id, DealStatus.PENDING)
        deal.payout = payout
        deal.confirm_aux_param = aux_param
        self._move(deal, DealStatus.CONFIRMED)
        self._uow.emit(ConfirmedDeal(owner=deal.owner, deal_id=deal_id, payout=payout))
        logger.info("deal.confirmed", owner=deal.owner, deal_id=deal_id, payout=payout)
        return deal

    def request_close(self, owner: str, deal_id: int, aux_param: int) -> Deal:
        """Owner asks for early close of a CONFIRMED deal."""
        require_amount("aux_param", aux_param)
        deal = self._edit(owner, deal_id, DealStatus.CONFIRMED)
        deal.close_aux_param = aux_param
        self._move(deal, DealStatus.CLOSE_REQUESTED)
        self._uow.emit(CloseRequested(owner=deal.owner, deal_id=deal_id, aux_param=aux_param))
        logger.info("deal.close_requested", owner=deal.owner, deal_id=deal_id)
        return deal

    def reject_close(self, owner: str, deal_id: int, reason: str) -> Deal:
        """Send a CLOSE_REQUESTED deal back to CONFIRMED."""
        deal = self._edit(owner, deal_id, DealStatus.CLOSE_REQUESTED)
        self._move(deal, DealStatus.CONFIRMED)
        self._uow.emit(CloseRejected(owner=deal.owner, deal_id=deal_id, reason=reason))
        logger.info("deal.close_rejected", owner=deal.owner, deal_id=deal_id, reason=reason)
        return deal

    def close_deal(self, owner: str, deal_id: int, payout: int) -> Deal:
        """Close a CLOSE_REQUESTED deal, paying ``payout`` out of the reserve.

        The investment is absorbed into the settlement reserve and ``payout``
        is paid from it: net ``settlement += investment - payout``.
        """
        require_amount("payout", payout)
        deal = self._edit(owner, deal_id, DealStatus.CLOSE_REQUESTED)
        entry = self._ledger.get_token(deal.token)
        if entry.settlement + deal.investment < payout:
            raise InsufficientFundsError(
                f"insufficient settlement balance for {deal.token}: "
                f"{entry.settlement} + {deal.investment} < {payout}"
            )

        self._ledger.release_exposure(deal.token, deal.investment)
        self._ledger.credit_settlement(deal.token, deal.investment)
        self._ledger.debit_settlement(deal.token, payout)
        self._ledger.pay_out(deal.token, deal.owner, payout)
        deal.paid_out = payout
        self._move(deal, DealStatus.CLOSED)

        self._uow.emit(ClosedDeal(owner=deal.owner, deal_id=deal_id, payout=payout))
        logger.info("deal.closed", owner=deal.owner, deal_id=deal_id, payout=payout)
        return deal

    def reject_deal(self, owner: str, deal_id: int, reason: str) -> Deal:
        """Reject a PENDING or CONFIRMED deal and release its exposure."""
        deal = self._edit(owner, deal_id, DealStatus.PENDING, DealStatus.CONFIRMED)
        self._ledger.release_exposure(deal.token, deal.investment)
        self._move(deal, DealStatus.REJECTED)
        self._uow.emit(RejectedDeal(owner=deal.owner, deal_id=deal_id, reason=reason))

        if self._refund_on_reject and deal.investment:
            self._ledger.pay_out(deal.token, deal.owner, deal.investment)
            deal.paid_out = deal.investment
            self._uow.emit(RefundedDeal(owner=deal.owner, deal_id=deal_id, amount=deal.investment))

        logger.info(
            "deal.rejected",
            owner=deal.owner,
            deal_id=deal_id,
            reason=reason,
            refunded=self._refund_on_reject,
        )
        return deal

    # ── Settlement hooks ───────────────────────────────────────────────────

    def settle(self, deal: Deal, payout: int) -> None:
        """Mark a CONFIRMED deal SETTLED with ``payout`` actually paid."""
        self._uow.remember(self._deals, (_owner_key(deal.owner), deal.deal_id))
        live = self._deals[(_owner_key(deal.owner), deal.deal_id)]
        live.paid_out = payout
        self._move(live, DealStatus.SETTLED)

    # ── Internals ───────────────────────────────────────────────────────────

    def _edit(self, owner: str, deal_id: int, *expected: DealStatus) -> Deal:
        """Check status, journal the record and return the live deal."""
        require_status(owner, deal_id, self.status_of(owner, deal_id), *expected)
        key = (_owner_key(owner), deal_id)
        self._uow.remember(self._deals, key)
        return self._deals[key]

    @staticmethod
    def _move(deal: Deal, status: DealStatus) -> None:
        validate_transition(deal.status, status)
        deal.status = status

    # ── Restore ─────────────────────────────────────────────────────────────

    def load(self, deals: list[Deal]) -> None:
        """Populate an empty registry from persisted records."""
        if self._deals:
            raise RuntimeError("registry already populated")
        for deal in sorted(deals, key=lambda d: (d.owner.lower(), d.deal_id)):
            key = _owner_key(deal.owner)
            expected = self._sequences.get(key, 0) + 1
            if deal.deal_id != expected:
                msg = f"non-contiguous deal ids for {key}: expected {expected}, got {deal.deal_id}"
                raise ValueError(msg)
            self._deals[(key, deal.deal_id)] = deal
            self._sequences[key] = deal.deal_id
