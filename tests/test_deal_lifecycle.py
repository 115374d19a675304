"""Tests for the deal lifecycle: fund, confirm, close request, close, reject.

Tests cover:
- fund_deal: per-owner contiguous ids, NewDeal argument order, investment pulled,
  rollback on unknown token / missing allowance / invalid amounts
- confirm_deal: payout recorded, exact StatusError text on re-confirm and on unknown deals
- request_close / reject_close: owner-only lookup, CONFIRMED <-> CLOSE_REQUESTED
- close_deal: reserve accounting (investment absorbed, payout paid), insufficient reserve
- reject_deal: exposure released, exact StatusError text for settled deals, optional refund
"""

from __future__ import annotations

import pytest

from conftest import ADMIN, ALICE, BOB, DEALER, ESCROW, STARTING_BALANCE, TREASURY, WETH, fund, fund_confirmed
from src.escrow.core.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    StatusError,
    TransferError,
    UnknownTokenError,
)
from src.escrow.core.roles import Role
from src.escrow.deals.schemas import DealStatus
from src.escrow.service import EscrowService


def _open(service: EscrowService, token: str = "WETH") -> int:
    return next(b.open for b in service.get_balances() if b.token == token)


def _settlement(service: EscrowService, token: str = "WETH") -> int:
    return next(b.settlement for b in service.get_balances() if b.token == token)


# ── fund_deal ───────────────────────────────────────────────────────────────


class TestFundDeal:
    def test_creates_pending_deal_and_pulls_investment(self, service, bank):
        records = service.fund_deal(ALICE, "first", 30, 7, 1_700_000_000, "WETH", 1000)

        assert [r.name for r in records] == ["NewDeal"]
        assert records[0].event.args() == (ALICE, 1, "first", 1000, 30, 1_700_000_000, 7, "WETH")

        deal = service.get_deal(ALICE, 1)
        assert deal.status == DealStatus.PENDING
        assert deal.investment == 1000
        assert bank.balance_of(WETH, ALICE) == STARTING_BALANCE - 1000
        assert bank.balance_of(WETH, ESCROW) == 1000
        assert _open(service) == 1000

    def test_ids_are_contiguous_per_owner(self, service):
        assert [fund(service, ALICE) for _ in range(3)] == [1, 2, 3]
        assert fund(service, BOB) == 1
        assert [d.deal_id for d in service.list_deals(ALICE)] == [1, 2, 3]
        assert [d.deal_id for d in service.list_deals(BOB)] == [1]

    def test_owner_addresses_are_case_insensitive(self, service):
        fund(service, ALICE)
        assert fund(service, ALICE.upper().replace("0X", "0x")) == 2
        assert service.get_deal(ALICE.upper(), 1).deal_id == 1

    def test_unknown_token_reverts(self, service, bank):
        with pytest.raises(UnknownTokenError):
            service.fund_deal(ALICE, "x", 0, 0, 0, "DOGE", 10)

        assert service.list_deals(ALICE) == []
        assert bank.balance_of(WETH, ALICE) == STARTING_BALANCE

    def test_missing_allowance_reverts_everything(self, service, bank):
        bank.approve(WETH, ALICE, ESCROW, 10)
        before = service.events.last_sequence

        with pytest.raises(TransferError, match="insufficient allowance"):
            service.fund_deal(ALICE, "x", 0, 0, 0, "WETH", 1000)

        assert service.list_deals(ALICE) == []
        assert _open(service) == 0
        assert service.events.last_sequence == before
        # The id was not consumed by the reverted call
        bank.approve(WETH, ALICE, ESCROW, 1000)
        assert fund(service, ALICE) == 1

    @pytest.mark.parametrize("investment", [-1, 1.5, True, "10"])
    def test_rejects_invalid_investment(self, service, investment):
        with pytest.raises(InvalidAmountError):
            service.fund_deal(ALICE, "x", 0, 0, 0, "WETH", investment)
        assert service.list_deals(ALICE) == []

    def test_zero_investment_is_allowed(self, service):
        deal_id = fund(service, ALICE, investment=0)
        assert service.get_deal(ALICE, deal_id).investment == 0


# ── confirm_deal ────────────────────────────────────────────────────────────


class TestConfirmDeal:
    def test_confirms_pending_deal(self, service):
        deal_id = fund(service)
        records = service.confirm_deal(DEALER, ALICE, deal_id, 2500, 42)

        assert records[0].event.args() == (ALICE, deal_id, 2500)
        deal = service.get_deal(ALICE, deal_id)
        assert deal.status == DealStatus.CONFIRMED
        assert deal.payout == 2500
        assert deal.confirm_aux_param == 42

    def test_reconfirm_fails_with_exact_message(self, service):
        deal_id = fund_confirmed(service, payout=2000)

        with pytest.raises(StatusError) as exc_info:
            service.confirm_deal(DEALER, ALICE, deal_id, 9999, 0)

        assert str(exc_info.value) == f"{ALICE}:1 incorrect status: 2 Expected PENDING"
        assert service.get_deal(ALICE, deal_id).payout == 2000

    def test_unknown_deal_reports_status_zero(self, service):
        with pytest.raises(StatusError, match="incorrect status: 0 Expected PENDING"):
            service.confirm_deal(DEALER, ALICE, 5, 100, 0)


# ── request_close / reject_close ────────────────────────────────────────────


class TestCloseRequests:
    def test_owner_requests_close(self, service):
        deal_id = fund_confirmed(service)
        records = service.request_close(ALICE, deal_id, 11)

        assert records[0].name == "CloseRequested"
        assert records[0].event.args() == (ALICE, deal_id, 11)
        deal = service.get_deal(ALICE, deal_id)
        assert deal.status == DealStatus.CLOSE_REQUESTED
        assert deal.close_aux_param == 11

    def test_other_account_cannot_request_close(self, service):
        deal_id = fund_confirmed(service, owner=ALICE)

        # Looked up under BOB's own key, where no such deal exists
        with pytest.raises(StatusError, match=f"{BOB}:1 incorrect status: 0 Expected CONFIRMED"):
            service.request_close(BOB, deal_id, 0)
        assert service.get_deal(ALICE, deal_id).status == DealStatus.CONFIRMED

    def test_pending_deal_cannot_request_close(self, service):
        deal_id = fund(service)
        with pytest.raises(StatusError, match="incorrect status: 1 Expected CONFIRMED"):
            service.request_close(ALICE, deal_id, 0)

    def test_reject_close_returns_to_confirmed(self, service):
        deal_id = fund_confirmed(service)
        service.request_close(ALICE, deal_id, 0)

        records = service.reject_close(DEALER, ALICE, deal_id, "too early")

        assert records[0].event.args() == (ALICE, deal_id, "too early")
        assert service.get_deal(ALICE, deal_id).status == DealStatus.CONFIRMED
        # The owner may ask again
        service.request_close(ALICE, deal_id, 1)
        assert service.get_deal(ALICE, deal_id).status == DealStatus.CLOSE_REQUESTED


# ── close_deal ──────────────────────────────────────────────────────────────


class TestCloseDeal:
    def test_close_absorbs_investment_and_pays_payout(self, service, bank):
        service.deposit_settlement(TREASURY, "WETH", 5000)
        deal_id = fund_confirmed(service, investment=1000, payout=2000)
        service.request_close(ALICE, deal_id, 0)

        records = service.close_deal(DEALER, ALICE, deal_id, 50)

        assert records[0].event.args() == (ALICE, deal_id, 50)
        assert _settlement(service) == 5950
        assert _open(service) == 0
        assert bank.balance_of(WETH, ESCROW) == 5950
        assert bank.balance_of(WETH, ALICE) == STARTING_BALANCE - 1000 + 50
        deal = service.get_deal(ALICE, deal_id)
        assert deal.status == DealStatus.CLOSED
        assert deal.paid_out == 50

    def test_close_requires_close_request(self, service):
        deal_id = fund_confirmed(service)
        with pytest.raises(StatusError, match="incorrect status: 2 Expected CLOSE_REQUESTED"):
            service.close_deal(DEALER, ALICE, deal_id, 50)

    def test_close_beyond_reserve_reverts(self, service, bank):
        service.deposit_settlement(TREASURY, "WETH", 100)
        deal_id = fund_confirmed(service, investment=1000)
        service.request_close(ALICE, deal_id, 0)

        with pytest.raises(InsufficientFundsError):
            service.close_deal(DEALER, ALICE, deal_id, 1101)

        assert service.get_deal(ALICE, deal_id).status == DealStatus.CLOSE_REQUESTED
        assert _settlement(service) == 100
        assert _open(service) == 1000
        assert bank.balance_of(WETH, ESCROW) == 1100

    def test_close_paying_entire_reserve(self, service):
        service.deposit_settlement(TREASURY, "WETH", 100)
        deal_id = fund_confirmed(service, investment=1000)
        service.request_close(ALICE, deal_id, 0)

        service.close_deal(DEALER, ALICE, deal_id, 1100)

        assert _settlement(service) == 0


# ── reject_deal ─────────────────────────────────────────────────────────────


class TestRejectDeal:
    @pytest.mark.parametrize("confirm", [False, True])
    def test_reject_releases_exposure_and_keeps_funds(self, service, bank, confirm):
        deal_id = fund_confirmed(service) if confirm else fund(service)

        records = service.reject_deal(DEALER, ALICE, deal_id, "kyc")

        assert [r.name for r in records] == ["RejectedDeal"]
        assert records[0].event.args() == (ALICE, deal_id, "kyc")
        assert service.get_deal(ALICE, deal_id).status == DealStatus.REJECTED
        assert _open(service) == 0
        assert bank.balance_of(WETH, ESCROW) == 1000

    def test_reject_settled_deal_fails_with_exact_message(self, service):
        for _ in range(3):
            fund_confirmed(service)
        service.settle_deals(DEALER, [], [(ALICE, 3)])

        with pytest.raises(StatusError) as exc_info:
            service.reject_deal(DEALER, ALICE, 3, "late")

        assert str(exc_info.value) == f"{ALICE}:3 incorrect status: 4 Expected PENDING or CONFIRMED"

    def test_refund_on_reject_returns_investment(self, bank):
        svc = EscrowService(bank, ESCROW, ADMIN, initial_tokens={"WETH": WETH}, refund_on_reject=True)
        svc.grant_role(ADMIN, Role.DEALER, DEALER)
        deal_id = fund(svc, investment=400)

        records = svc.reject_deal(DEALER, ALICE, deal_id, "declined")

        assert [r.name for r in records] == ["RejectedDeal", "RefundedDeal"]
        assert records[1].event.args() == (ALICE, deal_id, 400)
        assert bank.balance_of(WETH, ALICE) == STARTING_BALANCE
        assert bank.balance_of(WETH, ESCROW) == 0
        assert svc.get_deal(ALICE, deal_id).paid_out == 400


# ── open exposure ───────────────────────────────────────────────────────────


class TestOpenExposure:
    def test_open_matches_non_terminal_investments(self, service):
        service.deposit_settlement(TREASURY, "WETH", 10_000)
        fund(service, investment=100)
        fund_confirmed(service, investment=200)
        closed = fund_confirmed(service, investment=300)
        rejected = fund(service, investment=400)
        lost = fund_confirmed(service, investment=500)
        fund_confirmed(service, owner=BOB, investment=600)

        service.request_close(ALICE, closed, 0)
        service.close_deal(DEALER, ALICE, closed, 10)
        service.reject_deal(DEALER, ALICE, rejected, "kyc")
        service.settle_deals(DEALER, [], [(ALICE, lost)])

        deals = service.list_deals(ALICE) + service.list_deals(BOB)
        expected = sum(d.investment for d in deals if not d.is_terminal)
        assert expected == 900
        assert _open(service) == expected
