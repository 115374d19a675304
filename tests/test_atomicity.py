"""Tests for the shared execution model: all-or-nothing calls, re-entrancy, serialization.

Tests cover:
- a failing asset batch rolls back counters, deal records and events
- a gateway that calls back into the service gets ReentrancyError and the outer call reverts
- concurrent fund_deal calls from threads produce contiguous ids and consistent exposure
- committed changes are reported once by drain_changes
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

import pytest

from conftest import ADMIN, ALICE, BOB, DEALER, ESCROW, STARTING_BALANCE, TREASURY, WETH, fund, fund_confirmed
from src.escrow.assets.gateway import InMemoryTokenBank, Transfer
from src.escrow.core.errors import ReentrancyError, TransferError, UnknownTokenError
from src.escrow.core.roles import Role
from src.escrow.deals.schemas import DealStatus
from src.escrow.service import EscrowService


class FlakyGateway:
    """Delegates to a bank but refuses batches while ``fail`` is set."""

    def __init__(self, bank: InMemoryTokenBank) -> None:
        self.bank = bank
        self.fail = False

    def balance_of(self, token_contract: str, holder: str) -> int:
        return self.bank.balance_of(token_contract, holder)

    def execute(self, spender: str, transfers: Sequence[Transfer]) -> None:
        if self.fail and transfers:
            raise TransferError("gateway unavailable")
        self.bank.execute(spender, transfers)


class ReentrantGateway(FlakyGateway):
    """Calls back into the service from inside a batch."""

    service: EscrowService | None = None

    def execute(self, spender: str, transfers: Sequence[Transfer]) -> None:
        if self.service is not None and transfers:
            self.service.recalc_settlement_balances(ADMIN)
        super().execute(spender, transfers)


def _build(gateway) -> EscrowService:
    svc = EscrowService(gateway, ESCROW, ADMIN, initial_tokens={"WETH": WETH})
    svc.grant_role(ADMIN, Role.TREASURY, TREASURY)
    svc.grant_role(ADMIN, Role.DEALER, DEALER)
    return svc


class TestRollback:
    def test_failed_settlement_batch_leaves_no_trace(self, bank):
        gateway = FlakyGateway(bank)
        svc = _build(gateway)
        svc.deposit_settlement(TREASURY, "WETH", 10_000)
        fund_confirmed(svc, payout=2000)
        fund_confirmed(svc, payout=3000)
        balances = svc.get_balances()
        sequence = svc.events.last_sequence

        gateway.fail = True
        with pytest.raises(TransferError):
            svc.settle_deals(DEALER, [(ALICE, 1), (ALICE, 2)], [])

        assert svc.get_balances() == balances
        assert svc.events.last_sequence == sequence
        assert [d.status for d in svc.list_deals(ALICE)] == [DealStatus.CONFIRMED] * 2
        assert [d.paid_out for d in svc.list_deals(ALICE)] == [0, 0]

        gateway.fail = False
        report = svc.settle_deals(DEALER, [(ALICE, 1), (ALICE, 2)], [])
        assert [e.deal_id for e in report.settled] == [1, 2]

    def test_withdraw_after_rebind_to_empty_contract_reverts(self, service, bank):
        service.deposit_settlement(TREASURY, "WETH", 500)
        empty = "0x00000000000000000000000000000000000000e7"
        bank.deploy(empty, "WETH2")
        service.reregister_token(ADMIN, "WETH", empty)

        with pytest.raises(TransferError, match="exceeds balance"):
            service.withdraw_settlement(TREASURY, TREASURY, "WETH", 500)

        assert service.get_balances()[0].settlement == 500

    def test_reverted_first_deal_leaves_registry_usable(self, service, bank):
        bank.approve(WETH, ALICE, ESCROW, 0)
        with pytest.raises(TransferError, match="insufficient allowance"):
            service.fund_deal(ALICE, "x", 0, 0, 0, "WETH", 100)

        state = service.export_state()
        assert state.deals == []
        assert service.list_deals(ALICE) == []

        bank.approve(WETH, ALICE, ESCROW, 100)
        assert fund(service, investment=100) == 1
        assert [d.deal_id for d in service.export_state().deals] == [1]


class TestReentrancy:
    def test_callback_into_service_is_rejected(self, bank):
        gateway = ReentrantGateway(bank)
        svc = _build(gateway)
        gateway.service = svc

        with pytest.raises(ReentrancyError, match="ReentrancyGuard: reentrant call"):
            svc.fund_deal(ALICE, "x", 0, 0, 0, "WETH", 100)

        assert svc.list_deals(ALICE) == []
        assert bank.balance_of(WETH, ALICE) == STARTING_BALANCE

        gateway.service = None
        assert fund(svc) == 1


class TestSerialization:
    def test_concurrent_funding_keeps_ids_contiguous(self, service):
        def worker(owner: str) -> None:
            for _ in range(20):
                fund(service, owner, investment=10)

        threads = [threading.Thread(target=worker, args=(owner,)) for owner in (ALICE, BOB) * 3]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert [d.deal_id for d in service.list_deals(ALICE)] == list(range(1, 61))
        assert [d.deal_id for d in service.list_deals(BOB)] == list(range(1, 61))
        assert service.get_balances()[0].open == 120 * 10


class TestDrainChanges:
    def test_reports_touched_records_once(self, service):
        service.drain_changes()
        fund(service)

        changes = service.drain_changes()
        assert [(d.owner, d.deal_id) for d in changes.deals] == [(ALICE, 1)]
        assert [t.symbol for t in changes.tokens] == ["WETH"]
        assert [r.name for r in changes.events] == ["NewDeal"]

        assert service.drain_changes().empty

    def test_reverted_calls_report_nothing(self, service):
        service.drain_changes()
        with pytest.raises(UnknownTokenError):
            service.fund_deal(ALICE, "x", 0, 0, 0, "DOGE", 1)
        assert service.drain_changes().empty
