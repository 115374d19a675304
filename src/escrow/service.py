"""EscrowService -- the entry-point façade of the escrow settlement ledger.

Composes TokenLedger, DealRegistry, SettlementEngine, ReconciliationEngine,
PauseGate and AccessControl over one UnitOfWork, and enforces the execution
model every entry point shares:

1. Serialization: one process-wide lock gives all calls a total order.
2. Re-entrancy guard: a call arriving while another is executing (for
   example from an asset gateway callback) fails with ReentrancyError.
3. Authorization, then the pause gate, before any state is touched.
4. Internal counters and records change during the call; queued asset
   transfers run as one batch at the end.
5. Any exception rolls the unit of work back, so a reverted call leaves no
   trace in state, events or balances.

Committed records are also tracked as pending changes so a persistence layer
can write exactly what changed (see ``drain_changes``).
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager

import structlog
from pydantic import BaseModel, Field

from src.escrow.assets.gateway import AssetGateway
from src.escrow.core.errors import EscrowError, ReentrancyError
from src.escrow.core.monitoring import (
    escrow_operation_failures_total,
    escrow_operations_total,
    escrow_settled_deals_total,
    escrow_settlement_skips_total,
)
from src.escrow.core.pause import PauseGate
from src.escrow.core.roles import AccessControl, Role
from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.deals.registry import DealRegistry
from src.escrow.deals.schemas import Deal, DealRef, DealStatus
from src.escrow.events.log import DEFAULT_RETENTION, EventLog
from src.escrow.events.schemas import EventRecord
from src.escrow.ledger.schemas import SettlementAdjustment, TokenBalance, TokenEntry
from src.escrow.ledger.tokens import TokenLedger
from src.escrow.settlement.engine import SettlementEngine, SettlementReport, as_refs
from src.escrow.settlement.reconciliation import ReconciliationEngine

logger = structlog.get_logger(__name__)

DealRefLike = DealRef | tuple[str, int] | dict


class LedgerState(BaseModel):
    """Complete persisted state from which a service can be restored."""

    tokens: list[TokenEntry] = Field(default_factory=list)
    deals: list[Deal] = Field(default_factory=list)
    roles: dict[Role, list[str]] = Field(default_factory=dict)
    paused: bool = False
    last_event_sequence: int = 0


class LedgerChanges(BaseModel):
    """Records changed by committed calls since the last drain."""

    tokens: list[TokenEntry] = Field(default_factory=list)
    deals: list[Deal] = Field(default_factory=list)
    roles: dict[Role, list[str]] = Field(default_factory=dict)
    paused: bool = False
    events: list[EventRecord] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.tokens or self.deals or self.roles or self.events)


class EscrowService:
    """Escrow and multi-party settlement ledger.

    Args:
        assets: Fungible asset gateway (balances and transfers).
        escrow_address: The escrow's own account on the gateway.
        admin: Account granted every role at initialization.
        initial_tokens: Tokens registered at initialization (symbol -> contract).
        refund_on_reject: Return the investment when a deal is rejected.
        event_retention: Number of recent event records kept in memory.
    """

    def __init__(
        self,
        assets: AssetGateway,
        escrow_address: str,
        admin: str,
        initial_tokens: Mapping[str, str] | None = None,
        refund_on_reject: bool = False,
        *,
        event_retention: int = DEFAULT_RETENTION,
        state: LedgerState | None = None,
    ) -> None:
        self._assets = assets
        self._lock = threading.RLock()
        self._uow = UnitOfWork()
        self._ledger = TokenLedger(assets, escrow_address, self._uow)
        self._registry = DealRegistry(self._ledger, self._uow, refund_on_reject=refund_on_reject)
        self._settlement = SettlementEngine(self._registry, self._ledger, self._uow)
        self._reconciliation = ReconciliationEngine(self._ledger, self._uow)
        self._gate = PauseGate(self._uow, paused=state.paused if state else False)
        self._access = AccessControl(self._uow)
        self._events = EventLog(
            start_sequence=state.last_event_sequence if state else 0,
            retention=event_retention,
        )
        self._unsaved_events: list[EventRecord] = []
        self._dirty: dict[str, set] = {}

        if state is not None:
            self._ledger.load([e.model_copy() for e in state.tokens])
            self._registry.load([d.model_copy(deep=True) for d in state.deals])
            self._access.load(state.roles)
            logger.info(
                "escrow.restored",
                tokens=len(state.tokens),
                deals=len(state.deals),
                paused=state.paused,
                last_event_sequence=state.last_event_sequence,
            )
            return

        with self._operation("initialize", admin, gated=False):
            for role in Role:
                self._access.grant(role, admin, admin)
            for symbol, token_contract in (initial_tokens or {}).items():
                self._ledger.register_token(symbol, token_contract)

    @classmethod
    def from_state(
        cls,
        state: LedgerState,
        assets: AssetGateway,
        escrow_address: str,
        refund_on_reject: bool = False,
        event_retention: int = DEFAULT_RETENTION,
    ) -> EscrowService:
        """Rebuild a service from persisted state without emitting events."""
        return cls(
            assets,
            escrow_address,
            admin="",
            refund_on_reject=refund_on_reject,
            event_retention=event_retention,
            state=state,
        )

    # ── Execution model ────────────────────────────────────────────────────

    @contextmanager
    def _operation(
        self,
        name: str,
        caller: str,
        role: Role | None = None,
        gated: bool = True,
    ) -> Iterator[list[EventRecord]]:
        """Run one entry point; yields the list its committed records land in."""
        with self._lock:
            if self._uow.active:
                raise ReentrancyError()
            committed: list[EventRecord] = []
            self._uow.begin()
            try:
                if role is not None:
                    self._access.require(role, caller)
                if gated:
                    self._gate.ensure_not_paused()
                yield committed
                self._assets.execute(self._ledger.escrow_address, self._uow.pending_transfers)
            except Exception as exc:
                self._uow.rollback()
                error = exc.kind if isinstance(exc, EscrowError) else type(exc).__name__
                escrow_operation_failures_total.labels(operation=name, error=error).inc()
                logger.warning(
                    "escrow.operation_reverted",
                    operation=name,
                    caller=caller,
                    error=error,
                    detail=str(exc),
                )
                raise

            result = self._uow.commit()
            for kind, keys in result.touched.items():
                self._dirty.setdefault(kind, set()).update(keys)
            records = self._events.extend(result.events)
            self._unsaved_events.extend(records)
            committed.extend(records)
            escrow_operations_total.labels(operation=name).inc()

    # ── Token ledger ───────────────────────────────────────────────────────

    def register_token(self, caller: str, symbol: str, token_contract: str) -> list[EventRecord]:
        with self._operation("register_token", caller, Role.ADMIN) as records:
            self._ledger.register_token(symbol, token_contract)
        return records

    def reregister_token(self, caller: str, symbol: str, token_contract: str) -> list[EventRecord]:
        with self._operation("reregister_token", caller, Role.ADMIN) as records:
            self._ledger.reregister_token(symbol, token_contract)
        return records

    def get_balances(self) -> list[TokenBalance]:
        with self._lock:
            return self._ledger.get_balances()

    def deposit_settlement(self, caller: str, token: str, amount: int) -> list[EventRecord]:
        with self._operation("deposit_settlement", caller, Role.TREASURY) as records:
            self._ledger.deposit_settlement(caller, token, amount)
        return records

    def withdraw_settlement(self, caller: str, to: str, token: str, amount: int) -> list[EventRecord]:
        with self._operation("withdraw_settlement", caller, Role.TREASURY) as records:
            self._ledger.withdraw_settlement(to, token, amount)
        return records

    # ── Deal lifecycle ─────────────────────────────────────────────────────

    def fund_deal(
        self,
        caller: str,
        label: str,
        terms: int,
        aux_param: int,
        created_at: int,
        token: str,
        investment: int,
    ) -> list[EventRecord]:
        with self._operation("fund_deal", caller) as records:
            self._registry.fund_deal(caller, label, terms, aux_param, created_at, token, investment)
        return records

    def confirm_deal(
        self, caller: str, owner: str, deal_id: int, payout: int, aux_param: int
    ) -> list[EventRecord]:
        with self._operation("confirm_deal", caller, Role.DEALER) as records:
            self._registry.confirm_deal(owner, deal_id, payout, aux_param)
        return records

    def request_close(self, caller: str, deal_id: int, aux_param: int) -> list[EventRecord]:
        """Owner-only: the deal is looked up under the caller's own address."""
        with self._operation("request_close", caller) as records:
            self._registry.request_close(caller, deal_id, aux_param)
        return records

    def reject_close(self, caller: str, owner: str, deal_id: int, reason: str) -> list[EventRecord]:
        with self._operation("reject_close", caller, Role.DEALER) as records:
            self._registry.reject_close(owner, deal_id, reason)
        return records

    def close_deal(self, caller: str, owner: str, deal_id: int, payout: int) -> list[EventRecord]:
        with self._operation("close_deal", caller, Role.DEALER) as records:
            self._registry.close_deal(owner, deal_id, payout)
        return records

    def reject_deal(self, caller: str, owner: str, deal_id: int, reason: str) -> list[EventRecord]:
        with self._operation("reject_deal", caller, Role.DEALER) as records:
            self._registry.reject_deal(owner, deal_id, reason)
        return records

    def get_deal(self, owner: str, deal_id: int) -> Deal:
        with self._lock:
            return self._registry.get_deal(owner, deal_id).model_copy(deep=True)

    def list_deals(self, owner: str) -> list[Deal]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._registry.list_deals(owner)]

    def status_of(self, owner: str, deal_id: int) -> DealStatus:
        with self._lock:
            return self._registry.status_of(owner, deal_id)

    # ── Settlement & reconciliation ────────────────────────────────────────

    def settle_deals(
        self,
        caller: str,
        winners: Sequence[DealRefLike],
        losers: Sequence[DealRefLike],
    ) -> SettlementReport:
        winner_refs, loser_refs = as_refs(winners), as_refs(losers)
        with self._operation("settle_deals", caller, Role.DEALER):
            report = self._settlement.settle_deals(winner_refs, loser_refs)

        for event in report.settled:
            escrow_settled_deals_total.labels(outcome="won" if event.won else "lost").inc()
        for skipped in report.skipped:
            escrow_settlement_skips_total.labels(reason=skipped.reason.value).inc()
        return report

    def recalc_settlement_balances(self, caller: str) -> list[SettlementAdjustment]:
        with self._operation("recalc_settlement_balances", caller, Role.ADMIN):
            adjustments = self._reconciliation.recalc_settlement_balances()
        return adjustments

    # ── Pause gate & roles ─────────────────────────────────────────────────

    @property
    def paused(self) -> bool:
        return self._gate.paused

    def pause(self, caller: str) -> list[EventRecord]:
        with self._operation("pause", caller, Role.ADMIN, gated=False) as records:
            self._gate.pause(caller)
        return records

    def unpause(self, caller: str) -> list[EventRecord]:
        with self._operation("unpause", caller, Role.ADMIN, gated=False) as records:
            self._gate.unpause(caller)
        return records

    def grant_role(self, caller: str, role: Role, account: str) -> list[EventRecord]:
        with self._operation("grant_role", caller, Role.ADMIN, gated=False) as records:
            self._access.grant(role, account, caller)
        return records

    def revoke_role(self, caller: str, role: Role, account: str) -> list[EventRecord]:
        with self._operation("revoke_role", caller, Role.ADMIN, gated=False) as records:
            self._access.revoke(role, account, caller)
        return records

    def has_role(self, role: Role, account: str) -> bool:
        with self._lock:
            return self._access.has_role(role, account)

    # ── Events & persistence support ───────────────────────────────────────

    @property
    def events(self) -> EventLog:
        return self._events

    def export_state(self) -> LedgerState:
        with self._lock:
            return LedgerState(
                tokens=[e.model_copy() for e in self._ledger.entries()],
                deals=[d.model_copy(deep=True) for d in self._registry.all_deals()],
                roles={role: self._access.members(role) for role in Role},
                paused=self._gate.paused,
                last_event_sequence=self._events.last_sequence,
            )

    def drain_changes(self) -> LedgerChanges:
        """Return and clear the records changed since the previous drain."""
        with self._lock:
            token_keys = self._dirty.get("tokens", set())
            deal_keys = self._dirty.get("deals", set())
            role_keys = self._dirty.get("roles", set())
            changes = LedgerChanges(
                tokens=[
                    self._ledger.get_token(symbol).model_copy()
                    for symbol in sorted(token_keys)
                    if self._ledger.is_registered(symbol)
                ],
                deals=[
                    self._registry.get_deal(owner, deal_id).model_copy(deep=True)
                    for owner, deal_id in sorted(deal_keys)
                ],
                roles={role: self._access.members(role) for role in role_keys},
                paused=self._gate.paused,
                events=list(self._unsaved_events),
            )
            self._unsaved_events = []
            self._dirty = {}
            return changes

    def requeue_changes(self, changes: LedgerChanges) -> None:
        """Put drained changes back after a failed write.

        Records are re-read when next drained, so changes committed since the
        drain are merged rather than overwritten.
        """
        with self._lock:
            self._dirty.setdefault("tokens", set()).update(e.symbol for e in changes.tokens)
            self._dirty.setdefault("deals", set()).update(
                (d.owner.lower(), d.deal_id) for d in changes.deals
            )
            self._dirty.setdefault("roles", set()).update(changes.roles)
            self._unsaved_events = list(changes.events) + self._unsaved_events
