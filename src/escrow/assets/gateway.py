"""Fungible asset collaborator: the transfer/approve capability the escrow relies on.

The escrow never moves value itself. It reads live balances and hands the
gateway an ordered batch of transfers once all of an entry point's internal
effects are applied. Two kinds of movement exist:

- push: the escrow sends from its own account (payouts, withdrawals, refunds)
- pull: the escrow spends an allowance the sender granted it (deposits)

InMemoryTokenBank is the in-process implementation used by development
deployments and the test suite. It keeps ERC-20 style balances and
allowances per contract address and applies a batch all-or-nothing.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

import structlog
from pydantic import BaseModel, Field

from src.escrow.core.errors import TransferError, require_amount

logger = structlog.get_logger(__name__)


class TransferKind(str, Enum):
    """Direction of an asset movement relative to the escrow account."""

    PUSH = "push"
    PULL = "pull"


class Transfer(BaseModel):
    """One queued movement of ``amount`` units of the asset at ``token_contract``."""

    kind: TransferKind
    token_contract: str
    sender: str
    recipient: str
    amount: int = Field(ge=0)


@runtime_checkable
class AssetGateway(Protocol):
    """Capability the escrow needs from the underlying fungible assets."""

    def balance_of(self, token_contract: str, holder: str) -> int:
        """Live balance of ``holder`` in the asset at ``token_contract``."""
        ...

    def execute(self, spender: str, transfers: Sequence[Transfer]) -> None:
        """Apply ``transfers`` in order on behalf of ``spender``.

        Raises:
            TransferError: If any transfer fails; no transfer is applied.
        """
        ...


def _key(address: str) -> str:
    return address.lower()


class InMemoryTokenBank:
    """In-process ERC-20 style ledger of balances and allowances per contract.

    Contract and holder addresses are matched case-insensitively.
    """

    def __init__(self) -> None:
        self._symbols: dict[str, str] = {}
        self._balances: dict[str, defaultdict[str, int]] = {}
        self._allowances: dict[str, defaultdict[tuple[str, str], int]] = {}

    # ── Contract management ────────────────────────────────────────────────

    def deploy(self, token_contract: str, symbol: str, supply: int = 0, holder: str | None = None) -> str:
        """Create an asset at ``token_contract``, optionally minting ``supply`` to ``holder``."""
        contract = _key(token_contract)
        if contract in self._balances:
            raise ValueError(f"Asset already deployed at {token_contract}")
        self._symbols[contract] = symbol
        self._balances[contract] = defaultdict(int)
        self._allowances[contract] = defaultdict(int)
        if supply and holder is not None:
            self.mint(token_contract, holder, supply)
        logger.debug("asset.deployed", token_contract=token_contract, symbol=symbol)
        return token_contract

    def symbol_of(self, token_contract: str) -> str:
        return self._symbols[self._contract(token_contract)]

    def mint(self, token_contract: str, holder: str, amount: int) -> None:
        require_amount("amount", amount)
        self._balances[self._contract(token_contract)][_key(holder)] += amount

    # ── ERC-20 surface ─────────────────────────────────────────────────────

    def balance_of(self, token_contract: str, holder: str) -> int:
        contract = _key(token_contract)
        if contract not in self._balances:
            return 0
        return self._balances[contract].get(_key(holder), 0)

    def allowance(self, token_contract: str, owner: str, spender: str) -> int:
        contract = _key(token_contract)
        if contract not in self._allowances:
            return 0
        return self._allowances[contract].get((_key(owner), _key(spender)), 0)

    def approve(self, token_contract: str, owner: str, spender: str, amount: int) -> None:
        require_amount("amount", amount)
        self._allowances[self._contract(token_contract)][(_key(owner), _key(spender))] = amount

    def transfer(self, token_contract: str, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` from ``sender`` to ``recipient`` (sender's own funds)."""
        self.execute(
            sender,
            [
                Transfer(
                    kind=TransferKind.PUSH,
                    token_contract=token_contract,
                    sender=sender,
                    recipient=recipient,
                    amount=amount,
                )
            ],
        )

    # ── Batch execution ────────────────────────────────────────────────────

    def execute(self, spender: str, transfers: Sequence[Transfer]) -> None:
        if not transfers:
            return
        # Staged values keyed by (contract, holder) / (contract, owner, spender);
        # nothing is written back until every transfer has been validated.
        balances: dict[tuple[str, str], int] = {}
        allowances: dict[tuple[str, str, str], int] = {}

        for transfer in transfers:
            contract = _key(transfer.token_contract)
            if contract not in self._balances:
                raise TransferError(f"No asset deployed at {transfer.token_contract}")
            sender = _key(transfer.sender)
            recipient = _key(transfer.recipient)
            if transfer.kind == TransferKind.PULL:
                allowance_key = (contract, sender, _key(spender))
                granted = allowances.get(
                    allowance_key,
                    self._allowances[contract].get((sender, _key(spender)), 0),
                )
                if granted < transfer.amount:
                    raise TransferError("ERC20: insufficient allowance")
                allowances[allowance_key] = granted - transfer.amount
            elif sender != _key(spender):
                raise TransferError("ERC20: push must originate from the spender")

            available = balances.get((contract, sender), self._balances[contract].get(sender, 0))
            if available < transfer.amount:
                raise TransferError("ERC20: transfer amount exceeds balance")
            balances[(contract, sender)] = available - transfer.amount
            received = balances.get((contract, recipient), self._balances[contract].get(recipient, 0))
            balances[(contract, recipient)] = received + transfer.amount

        for (contract, holder), value in balances.items():
            self._balances[contract][holder] = value
        for (contract, owner, allowed), value in allowances.items():
            self._allowances[contract][(owner, allowed)] = value
        logger.debug("asset.batch_executed", spender=spender, transfers=len(transfers))

    def _contract(self, token_contract: str) -> str:
        contract = _key(token_contract)
        if contract not in self._balances:
            raise TransferError(f"No asset deployed at {token_contract}")
        return contract
