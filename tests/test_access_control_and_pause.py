"""Tests for role checks and the pause gate.

Tests cover:
- admin holds every role after construction; role grant/revoke events and no-op repeats
- each privileged group rejects accounts without its role, with the exact message
- pause gate blocks mutating calls, leaves role management and reads available
- authorization is checked before the pause gate
"""

from __future__ import annotations

import pytest

from conftest import ADMIN, ALICE, BOB, DEALER, TREASURY, fund, fund_confirmed
from src.escrow.core.errors import AuthorizationError, NotPausedError, PausedError
from src.escrow.core.roles import Role


class TestRoles:
    def test_admin_holds_every_role(self, service):
        assert all(service.has_role(role, ADMIN) for role in Role)
        granted = [r.event.args() for r in service.events.named("RoleGranted")][:3]
        assert granted == [(role.value, ADMIN, ADMIN) for role in Role]

    def test_missing_role_message(self, service):
        deal_id = fund(service, ALICE)
        with pytest.raises(AuthorizationError) as exc_info:
            service.confirm_deal(ALICE, ALICE, deal_id, 100, 0)
        assert str(exc_info.value) == f"AccessControl: account {ALICE} is missing role DEALER"

    @pytest.mark.parametrize(
        ("call", "role"),
        [
            (lambda s: s.register_token(DEALER, "WBTC", "0x01"), Role.ADMIN),
            (lambda s: s.recalc_settlement_balances(TREASURY), Role.ADMIN),
            (lambda s: s.pause(DEALER), Role.ADMIN),
            (lambda s: s.grant_role(TREASURY, Role.DEALER, BOB), Role.ADMIN),
            (lambda s: s.deposit_settlement(DEALER, "WETH", 1), Role.TREASURY),
            (lambda s: s.withdraw_settlement(DEALER, DEALER, "WETH", 1), Role.TREASURY),
            (lambda s: s.settle_deals(TREASURY, [], []), Role.DEALER),
            (lambda s: s.reject_deal(TREASURY, ALICE, 1, ""), Role.DEALER),
        ],
    )
    def test_privileged_groups_are_separated(self, service, call, role):
        with pytest.raises(AuthorizationError) as exc_info:
            call(service)
        assert exc_info.value.role == role

    def test_grant_and_revoke(self, service):
        records = service.grant_role(ADMIN, Role.DEALER, BOB)
        assert records[0].event.args() == ("dealer", BOB, ADMIN)
        assert service.has_role(Role.DEALER, BOB)

        assert service.grant_role(ADMIN, Role.DEALER, BOB) == []

        records = service.revoke_role(ADMIN, Role.DEALER, BOB)
        assert records[0].name == "RoleRevoked"
        assert not service.has_role(Role.DEALER, BOB)
        assert service.revoke_role(ADMIN, Role.DEALER, BOB) == []

    def test_accounts_match_case_insensitively(self, service):
        assert service.has_role(Role.DEALER, DEALER.upper().replace("0X", "0x"))


class TestPauseGate:
    def test_paused_ledger_rejects_recalc_until_unpaused(self, service):
        records = service.pause(ADMIN)
        assert records[0].event.args() == (ADMIN,)
        assert service.paused

        with pytest.raises(PausedError, match="Pausable: paused"):
            service.recalc_settlement_balances(ADMIN)

        service.unpause(ADMIN)
        assert service.recalc_settlement_balances(ADMIN) == []

    def test_gates_every_mutating_operation(self, service):
        fund_confirmed(service)
        service.pause(ADMIN)
        sequence = service.events.last_sequence

        for call in (
            lambda: service.fund_deal(ALICE, "x", 0, 0, 0, "WETH", 1),
            lambda: service.confirm_deal(DEALER, ALICE, 1, 1, 0),
            lambda: service.request_close(ALICE, 1, 0),
            lambda: service.settle_deals(DEALER, [(ALICE, 1)], []),
            lambda: service.deposit_settlement(TREASURY, "WETH", 1),
            lambda: service.register_token(ADMIN, "WBTC", "0x02"),
        ):
            with pytest.raises(PausedError):
                call()

        assert service.events.last_sequence == sequence

    def test_reads_and_role_management_stay_available(self, service):
        fund(service)
        service.pause(ADMIN)

        assert service.get_deal(ALICE, 1).deal_id == 1
        assert service.get_balances()[0].open == 1000
        service.grant_role(ADMIN, Role.TREASURY, BOB)
        assert service.has_role(Role.TREASURY, BOB)

    def test_double_pause_and_unpause_fail(self, service):
        with pytest.raises(NotPausedError, match="Pausable: not paused"):
            service.unpause(ADMIN)
        service.pause(ADMIN)
        with pytest.raises(PausedError):
            service.pause(ADMIN)

    def test_role_check_precedes_pause_check(self, service):
        service.pause(ADMIN)
        with pytest.raises(AuthorizationError):
            service.recalc_settlement_balances(ALICE)
