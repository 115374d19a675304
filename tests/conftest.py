"""Shared fixtures for the escrow ledger test suite.

Provides:
- Well-known account and contract addresses
- An InMemoryTokenBank with WETH and WBTC deployed, funded accounts and
  allowances granted to the escrow
- An EscrowService with WETH registered and TREASURY / DEALER granted
- fund_confirmed(): helper that funds and confirms a deal in one step
"""

from __future__ import annotations

import pytest

from src.escrow.assets.gateway import InMemoryTokenBank
from src.escrow.core.roles import Role
from src.escrow.service import EscrowService

ESCROW = "0x000000000000000000000000000000000000e5c0"
ADMIN = "0x00000000000000000000000000000000000000a1"
TREASURY = "0x00000000000000000000000000000000000000b1"
DEALER = "0x00000000000000000000000000000000000000c1"
ALICE = "0x00000000000000000000000000000000000000d1"
BOB = "0x00000000000000000000000000000000000000d2"

WETH = "0x00000000000000000000000000000000000000e1"
WBTC_A = "0x00000000000000000000000000000000000000f1"
WBTC_B = "0x00000000000000000000000000000000000000f2"

STARTING_BALANCE = 1_000_000
ALLOWANCE = 10**30


@pytest.fixture
def bank() -> InMemoryTokenBank:
    """Asset bank with funded depositors and treasury, escrow pre-approved."""
    bank = InMemoryTokenBank()
    bank.deploy(WETH, "WETH")
    bank.deploy(WBTC_A, "WBTC")
    for contract in (WETH, WBTC_A):
        for account in (ALICE, BOB, TREASURY):
            bank.mint(contract, account, STARTING_BALANCE)
            bank.approve(contract, account, ESCROW, ALLOWANCE)
    return bank


@pytest.fixture
def service(bank: InMemoryTokenBank) -> EscrowService:
    """Ledger with WETH registered and separate treasury and dealer accounts."""
    svc = EscrowService(bank, ESCROW, ADMIN, initial_tokens={"WETH": WETH})
    svc.grant_role(ADMIN, Role.TREASURY, TREASURY)
    svc.grant_role(ADMIN, Role.DEALER, DEALER)
    return svc


def fund(service: EscrowService, owner: str = ALICE, investment: int = 1000, token: str = "WETH") -> int:
    """Fund a deal and return its id."""
    records = service.fund_deal(owner, "deal", 30, 7, 1_700_000_000, token, investment)
    return records[0].event.deal_id


def fund_confirmed(
    service: EscrowService,
    owner: str = ALICE,
    investment: int = 1000,
    payout: int = 2000,
    token: str = "WETH",
) -> int:
    """Fund a deal and confirm it with ``payout``; returns its id."""
    deal_id = fund(service, owner, investment, token)
    service.confirm_deal(DEALER, owner, deal_id, payout, 0)
    return deal_id
