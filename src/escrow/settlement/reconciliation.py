"""Reconciliation: re-derive settlement reserves from live balances.

For every registered token the reserve becomes whatever the escrow really
holds beyond open exposure, floored at zero:

    settlement = max(0, live_balance - open)

This folds forfeited loser investments and rejected-deal funds into the
reserve, and corrects the drift a contract rebind leaves behind. Running it
twice with unchanged balances changes nothing the second time.
"""

from __future__ import annotations

import structlog

from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.events.schemas import SettlementRecalculated
from src.escrow.ledger.schemas import SettlementAdjustment
from src.escrow.ledger.tokens import TokenLedger

logger = structlog.get_logger(__name__)


class ReconciliationEngine:
    def __init__(self, ledger: TokenLedger, uow: UnitOfWork) -> None:
        self._ledger = ledger
        self._uow = uow

    def recalc_settlement_balances(self) -> list[SettlementAdjustment]:
        """Recompute every token's reserve; returns the reserves that changed."""
        adjustments = []
        for balance in self._ledger.get_balances():
            target = max(0, balance.balance - balance.open)
            if target == balance.settlement:
                continue
            self._ledger.set_settlement(balance.token, target)
            adjustment = SettlementAdjustment(
                token=balance.token, previous=balance.settlement, settlement=target
            )
            adjustments.append(adjustment)
            self._uow.emit(SettlementRecalculated(**adjustment.model_dump()))
            logger.warning(
                "settlement.recalculated",
                token=balance.token,
                balance=balance.balance,
                open=balance.open,
                previous=balance.settlement,
                settlement=target,
            )
        return adjustments
