"""Error hierarchy for every hard failure an escrow entry point can raise.

All errors derive from EscrowError so the API layer can map them to HTTP
responses in one place. Each one aborts the whole entry point: the unit of
work is rolled back before the error leaves the service.

The settlement skip (terminal deal, thin reserve) is not an error and has no
class here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from src.escrow.core.roles import Role
    from src.escrow.deals.schemas import DealStatus


class EscrowError(Exception):
    """Base class for escrow ledger failures."""

    kind = "escrow_error"


class StatusError(EscrowError):
    """Raised when a deal is not in a status the requested transition accepts."""

    kind = "status_error"

    def __init__(
        self,
        owner: str,
        deal_id: int,
        status: DealStatus,
        expected: Sequence[DealStatus],
    ) -> None:
        self.owner = owner
        self.deal_id = deal_id
        self.status = status
        self.expected = tuple(expected)
        super().__init__(
            f"{owner.lower()}:{deal_id} incorrect status: {int(status)} "
            f"Expected {' or '.join(s.name for s in self.expected)}"
        )


class InsufficientFundsError(EscrowError):
    """Raised when a settlement reserve cannot cover a withdrawal or payout."""

    kind = "insufficient_funds"


class DuplicateTokenContractError(EscrowError):
    """Raised when a contract address already backs a different token symbol."""

    kind = "duplicate_token_contract"

    def __init__(self, token_contract: str, existing_symbol: str) -> None:
        self.token_contract = token_contract
        self.existing_symbol = existing_symbol
        super().__init__(
            f"Token contract {token_contract} already registered as {existing_symbol}"
        )


class TokenAlreadyRegisteredError(EscrowError):
    """Raised when register_token is called for a symbol that already exists."""

    kind = "token_already_registered"

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"Token {symbol} already registered")


class UnknownTokenError(EscrowError):
    """Raised when an operation references a token symbol that is not registered."""

    kind = "unknown_token"

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"Token {symbol} not registered")


class DealNotFoundError(EscrowError):
    """Raised by read accessors when no deal exists for (owner, deal_id)."""

    kind = "deal_not_found"

    def __init__(self, owner: str, deal_id: int) -> None:
        self.owner = owner
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {owner.lower()}:{deal_id}")


class PausedError(EscrowError):
    """Raised when a gated entry point is called while the ledger is paused."""

    kind = "paused"

    def __init__(self) -> None:
        super().__init__("Pausable: paused")


class NotPausedError(EscrowError):
    """Raised when unpause() is called while the ledger is running."""

    kind = "not_paused"

    def __init__(self) -> None:
        super().__init__("Pausable: not paused")


class AuthorizationError(EscrowError):
    """Raised when the caller lacks the role an entry point requires."""

    kind = "unauthorized"

    def __init__(self, account: str, role: Role) -> None:
        self.account = account
        self.role = role
        super().__init__(
            f"AccessControl: account {account.lower()} is missing role {role.name}"
        )


class TransferError(EscrowError):
    """Raised when the asset gateway refuses a transfer (balance or allowance)."""

    kind = "transfer_failed"


class InvalidAmountError(EscrowError, ValueError):
    """Raised for amounts that are not unsigned integers."""

    kind = "invalid_amount"


class ReentrancyError(EscrowError):
    """Raised when an entry point is invoked while another one is executing."""

    kind = "reentrant_call"

    def __init__(self) -> None:
        super().__init__("ReentrancyGuard: reentrant call")


def require_amount(name: str, value: int) -> int:
    """Validate an unsigned integer amount and return it unchanged."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must not be negative, got {value}")
    return value
