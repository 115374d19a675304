"""Deal status transition rules.

Every mutating deal operation validates its precondition through
``require_status`` so the StatusError message format lives in one place.
VALID_TRANSITIONS documents the full graph and is checked by
``validate_transition`` whenever a status is written.
"""

from __future__ import annotations

from src.escrow.core.errors import StatusError
from src.escrow.deals.schemas import DealStatus

# Maps each status to the set of statuses it can transition TO.
VALID_TRANSITIONS: dict[DealStatus, set[DealStatus]] = {
    DealStatus.NONE: {DealStatus.PENDING},
    DealStatus.PENDING: {DealStatus.CONFIRMED, DealStatus.REJECTED},
    DealStatus.CONFIRMED: {
        DealStatus.CLOSE_REQUESTED,
        DealStatus.REJECTED,
        DealStatus.SETTLED,
    },
    DealStatus.CLOSE_REQUESTED: {DealStatus.CLOSED, DealStatus.CONFIRMED},
    DealStatus.SETTLED: set(),  # Terminal
    DealStatus.CLOSED: set(),  # Terminal
    DealStatus.REJECTED: set(),  # Terminal
}


class InvalidTransitionError(ValueError):
    """Raised when code attempts a status write outside VALID_TRANSITIONS."""

    def __init__(self, from_status: DealStatus, to_status: DealStatus) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition: {from_status.name} -> {to_status.name}. "
            f"Allowed transitions from {from_status.name}: "
            f"{', '.join(s.name for s in sorted(VALID_TRANSITIONS.get(from_status, set())))}"
        )


def require_status(
    owner: str,
    deal_id: int,
    current: DealStatus,
    *expected: DealStatus,
) -> None:
    """Check that a deal's status is one of ``expected``.

    Raises:
        StatusError: With the caller-visible "incorrect status" message.
    """
    if current not in expected:
        raise StatusError(owner, deal_id, current, expected)


def validate_transition(from_status: DealStatus, to_status: DealStatus) -> None:
    """Validate that a status transition is part of the lifecycle graph.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    if to_status not in VALID_TRANSITIONS.get(from_status, set()):
        raise InvalidTransitionError(from_status, to_status)
