"""Per-token ledger: registered payout tokens, settlement reserves, open exposure.

TokenLedger owns the registry of tokens (in registration order) and the two
stored counters per token. Live balances come from the asset gateway for the
escrow's own account. Counter changes are journaled on the current unit of
work; asset movements are queued on it and executed by the service.
"""

from __future__ import annotations

import structlog

from src.escrow.assets.gateway import AssetGateway, Transfer, TransferKind
from src.escrow.core.errors import (
    DuplicateTokenContractError,
    InsufficientFundsError,
    TokenAlreadyRegisteredError,
    UnknownTokenError,
    require_amount,
)
from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.events.schemas import (
    SettlementDeposited,
    SettlementWithdrawn,
    TokenRegistered,
    TokenReregistered,
)
from src.escrow.ledger.schemas import TokenBalance, TokenEntry

logger = structlog.get_logger(__name__)


class TokenLedger:
    """Registered tokens and their settlement reserve / open exposure counters.

    Args:
        assets: Gateway used for live balances.
        escrow_address: The escrow's own account on the gateway.
        uow: Unit of work shared with the other ledger components.
    """

    def __init__(self, assets: AssetGateway, escrow_address: str, uow: UnitOfWork) -> None:
        self._assets = assets
        self._escrow = escrow_address
        self._uow = uow
        self._tokens: dict[str, TokenEntry] = {}
        uow.track("tokens", self._tokens)

    @property
    def escrow_address(self) -> str:
        return self._escrow

    def load(self, entries: list[TokenEntry]) -> None:
        """Populate an empty ledger from persisted entries, keeping their order."""
        if self._tokens:
            raise RuntimeError("token ledger already populated")
        for entry in entries:
            self._tokens[entry.symbol] = entry

    # ── Registration ────────────────────────────────────────────────────────

    def register_token(self, symbol: str, token_contract: str) -> TokenEntry:
        """Register ``symbol`` backed by ``token_contract`` with zeroed counters."""
        if symbol in self._tokens:
            raise TokenAlreadyRegisteredError(symbol)
        self._guard_contract(symbol, token_contract)

        self._uow.remember(self._tokens, symbol)
        entry = TokenEntry(symbol=symbol, token_contract=token_contract)
        self._tokens[symbol] = entry
        self._uow.emit(TokenRegistered(token=symbol, token_contract=token_contract))
        logger.info("token.registered", token=symbol, token_contract=token_contract)
        return entry

    def reregister_token(self, symbol: str, token_contract: str) -> TokenEntry:
        """Rebind ``symbol`` to a new backing contract.

        Counters are left untouched on purpose; the resulting drift between
        bookkeeping and the new contract's balance is corrected by
        reconciliation.
        """
        entry = self.get_token(symbol)
        self._guard_contract(symbol, token_contract)

        previous = entry.token_contract
        self._uow.remember(self._tokens, symbol)
        entry.token_contract = token_contract
        self._uow.emit(
            TokenReregistered(token=symbol, previous_contract=previous, token_contract=token_contract)
        )
        logger.warning(
            "token.reregistered",
            token=symbol,
            previous_contract=previous,
            token_contract=token_contract,
        )
        return entry

    def _guard_contract(self, symbol: str, token_contract: str) -> None:
        for existing in self._tokens.values():
            if existing.symbol != symbol and existing.token_contract.lower() == token_contract.lower():
                raise DuplicateTokenContractError(token_contract, existing.symbol)

    # ── Reads ───────────────────────────────────────────────────────────────

    def get_token(self, symbol: str) -> TokenEntry:
        entry = self._tokens.get(symbol)
        if entry is None:
            raise UnknownTokenError(symbol)
        return entry

    def is_registered(self, symbol: str) -> bool:
        return symbol in self._tokens

    def entries(self) -> list[TokenEntry]:
        """Stored entries in registration order."""
        return list(self._tokens.values())

    def get_balances(self) -> list[TokenBalance]:
        """Live balance and bookkeeping for every token, in registration order."""
        return [
            TokenBalance(
                token=entry.symbol,
                token_contract=entry.token_contract,
                balance=self._assets.balance_of(entry.token_contract, self._escrow),
                settlement=entry.settlement,
                open=entry.open,
            )
            for entry in self._tokens.values()
        ]

    # ── Counter adjustments (used by deal and settlement operations) ───────

    def add_exposure(self, symbol: str, amount: int) -> None:
        entry = self._edit(symbol)
        entry.open += amount

    def release_exposure(self, symbol: str, amount: int) -> None:
        entry = self._edit(symbol)
        if entry.open < amount:
            # Exposure always equals the sum over open deals; going negative means
            # a deal was released twice.
            msg = f"open exposure for {symbol} would go negative ({entry.open} - {amount})"
            raise RuntimeError(msg)
        entry.open -= amount

    def credit_settlement(self, symbol: str, amount: int) -> None:
        entry = self._edit(symbol)
        entry.settlement += amount

    def debit_settlement(self, symbol: str, amount: int) -> None:
        entry = self._edit(symbol)
        if entry.settlement < amount:
            raise InsufficientFundsError(
                f"insufficient settlement balance for {symbol}: {entry.settlement} < {amount}"
            )
        entry.settlement -= amount

    def set_settlement(self, symbol: str, amount: int) -> None:
        entry = self._edit(symbol)
        entry.settlement = amount

    def _edit(self, symbol: str) -> TokenEntry:
        self.get_token(symbol)
        self._uow.remember(self._tokens, symbol)
        return self._tokens[symbol]

    # ── Asset movements ────────────────────────────────────────────────────

    def pay_out(self, symbol: str, recipient: str, amount: int) -> None:
        """Queue a transfer of ``amount`` from the escrow to ``recipient``."""
        entry = self.get_token(symbol)
        self._uow.enqueue_transfer(
            Transfer(
                kind=TransferKind.PUSH,
                token_contract=entry.token_contract,
                sender=self._escrow,
                recipient=recipient,
                amount=amount,
            )
        )

    def pull_in(self, symbol: str, sender: str, amount: int) -> None:
        """Queue a pull of ``amount`` from ``sender`` into the escrow (needs allowance)."""
        entry = self.get_token(symbol)
        self._uow.enqueue_transfer(
            Transfer(
                kind=TransferKind.PULL,
                token_contract=entry.token_contract,
                sender=sender,
                recipient=self._escrow,
                amount=amount,
            )
        )

    # ── Treasury operations ────────────────────────────────────────────────

    def deposit_settlement(self, sender: str, symbol: str, amount: int) -> None:
        """Pull ``amount`` from ``sender`` and add it to the settlement reserve."""
        require_amount("amount", amount)
        self.credit_settlement(symbol, amount)
        self.pull_in(symbol, sender, amount)
        self._uow.emit(SettlementDeposited(sender=sender, token=symbol, amount=amount))
        logger.info("settlement.deposited", token=symbol, sender=sender, amount=amount)

    def withdraw_settlement(self, to: str, symbol: str, amount: int) -> None:
        """Take ``amount`` out of the settlement reserve and send it to ``to``."""
        require_amount("amount", amount)
        self.debit_settlement(symbol, amount)
        self.pay_out(symbol, to, amount)
        self._uow.emit(SettlementWithdrawn(to=to, token=symbol, amount=amount))
        logger.info("settlement.withdrawn", token=symbol, to=to, amount=amount)
