"""Event schemas emitted by the escrow entry points.

Each event is a frozen Pydantic model whose fields are declared in the exact
order external consumers read them; ``args()`` returns the values in that
order and ``name`` is the wire name. Field order is load-bearing: do not
reorder fields on an existing event.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny


class EscrowEvent(BaseModel):
    """Base class for every event the ledger emits."""

    model_config = ConfigDict(frozen=True)

    name: ClassVar[str] = "EscrowEvent"

    def args(self) -> tuple[Any, ...]:
        """Event arguments in declaration order."""
        return tuple(getattr(self, field) for field in type(self).model_fields)


# ── Deal lifecycle ──────────────────────────────────────────────────────────


class NewDeal(EscrowEvent):
    name: ClassVar[str] = "NewDeal"

    depositor: str
    deal_id: int
    label: str
    investment: int
    terms: int
    created_at: int
    aux_param: int
    token: str


class ConfirmedDeal(EscrowEvent):
    name: ClassVar[str] = "ConfirmedDeal"

    owner: str
    deal_id: int
    payout: int


class CloseRequested(EscrowEvent):
    name: ClassVar[str] = "CloseRequested"

    owner: str
    deal_id: int
    aux_param: int


class CloseRejected(EscrowEvent):
    name: ClassVar[str] = "CloseRejected"

    owner: str
    deal_id: int
    reason: str


class ClosedDeal(EscrowEvent):
    name: ClassVar[str] = "ClosedDeal"

    owner: str
    deal_id: int
    payout: int


class RejectedDeal(EscrowEvent):
    name: ClassVar[str] = "RejectedDeal"

    owner: str
    deal_id: int
    reason: str


class RefundedDeal(EscrowEvent):
    name: ClassVar[str] = "RefundedDeal"

    owner: str
    deal_id: int
    amount: int


class SettledDeal(EscrowEvent):
    name: ClassVar[str] = "SettledDeal"

    owner: str
    deal_id: int
    payout: int
    won: bool


# ── Token ledger ────────────────────────────────────────────────────────────


class TokenRegistered(EscrowEvent):
    name: ClassVar[str] = "TokenRegistered"

    token: str
    token_contract: str


class TokenReregistered(EscrowEvent):
    name: ClassVar[str] = "TokenReregistered"

    token: str
    previous_contract: str
    token_contract: str


class SettlementDeposited(EscrowEvent):
    name: ClassVar[str] = "SettlementDeposited"

    sender: str
    token: str
    amount: int


class SettlementWithdrawn(EscrowEvent):
    name: ClassVar[str] = "SettlementWithdrawn"

    to: str
    token: str
    amount: int


class SettlementRecalculated(EscrowEvent):
    name: ClassVar[str] = "SettlementRecalculated"

    token: str
    previous: int
    settlement: int


# ── Administration ──────────────────────────────────────────────────────────


class Paused(EscrowEvent):
    name: ClassVar[str] = "Paused"

    account: str


class Unpaused(EscrowEvent):
    name: ClassVar[str] = "Unpaused"

    account: str


class RoleGranted(EscrowEvent):
    name: ClassVar[str] = "RoleGranted"

    role: str
    account: str
    sender: str


class RoleRevoked(EscrowEvent):
    name: ClassVar[str] = "RoleRevoked"

    role: str
    account: str
    sender: str


EVENT_TYPES: dict[str, type[EscrowEvent]] = {
    cls.name: cls
    for cls in (
        NewDeal,
        ConfirmedDeal,
        CloseRequested,
        CloseRejected,
        ClosedDeal,
        RejectedDeal,
        RefundedDeal,
        SettledDeal,
        TokenRegistered,
        TokenReregistered,
        SettlementDeposited,
        SettlementWithdrawn,
        SettlementRecalculated,
        Paused,
        Unpaused,
        RoleGranted,
        RoleRevoked,
    )
}


class EventRecord(BaseModel):
    """A committed event with its position in the ledger's event log."""

    sequence: int
    event: SerializeAsAny[EscrowEvent]
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return self.event.name

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form: sequence, name, named args and timestamp."""
        return {
            "sequence": self.sequence,
            "name": self.event.name,
            "args": self.event.model_dump(mode="json"),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        event_cls = EVENT_TYPES.get(data["name"])
        if event_cls is None:
            msg = f"Unknown event name: {data['name']}"
            raise ValueError(msg)
        recorded_at = data.get("recorded_at")
        return cls(
            sequence=data["sequence"],
            event=event_cls.model_validate(data["args"]),
            recorded_at=(
                datetime.fromisoformat(recorded_at)
                if isinstance(recorded_at, str)
                else recorded_at or datetime.now(timezone.utc)
            ),
        )
