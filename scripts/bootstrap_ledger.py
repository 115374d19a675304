#!/usr/bin/env python3
"""CLI script to bootstrap the escrow ledger database.

Usage:
    python scripts/bootstrap_ledger.py --token WETH=0xc02a... --token WBTC=0x2260...
    python scripts/bootstrap_ledger.py --treasury 0xabc... --dealer 0xdef... --issue-token

Connects directly to the database using DATABASE_URL from environment or .env file.
Creates tables, restores the ledger (or initializes it with ADMIN_ADDRESS and
INITIAL_TOKENS), registers tokens and grants roles as the admin account, then
persists the changes.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.escrow
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def parse_token(value: str) -> tuple[str, str]:
    symbol, sep, contract = value.partition("=")
    if not sep or not symbol or not contract:
        raise argparse.ArgumentTypeError(f"expected SYMBOL=CONTRACT, got {value!r}")
    return symbol, contract


async def bootstrap(
    tokens: list[tuple[str, str]],
    treasury: list[str],
    dealers: list[str],
    issue_token: bool,
) -> None:
    """Apply registrations and grants through the ledger service."""
    from src.escrow.assets.gateway import InMemoryTokenBank
    from src.escrow.config import get_settings
    from src.escrow.core.database import close_db, get_session, init_db
    from src.escrow.core.roles import Role
    from src.escrow.core.security import create_access_token
    from src.escrow.persistence.repository import LedgerRepository
    from src.escrow.runtime import LedgerRuntime

    settings = get_settings()
    await init_db()

    repository = LedgerRepository(session_factory=get_session)
    runtime = await LedgerRuntime.open(settings, InMemoryTokenBank(), repository)
    service = runtime.service
    admin = settings.ADMIN_ADDRESS
    print(f"Ledger ready: escrow={settings.ESCROW_ADDRESS}, admin={admin}")

    registered = {balance.token: balance.token_contract for balance in service.get_balances()}
    for symbol, contract in tokens:
        if symbol in registered:
            print(f"  Token {symbol} already registered to {registered[symbol]} (skipped)")
            continue
        await runtime.execute(service.register_token, admin, symbol, contract)
        print(f"  Token registered: {symbol} -> {contract}")

    for role, accounts in ((Role.TREASURY, treasury), (Role.DEALER, dealers)):
        for account in accounts:
            _, records = await runtime.execute(service.grant_role, admin, role, account)
            state = "granted" if records else "already held"
            print(f"  Role {role.value} {state}: {account}")

    if issue_token:
        print(f"  Admin bearer token: {create_access_token(admin)}")

    await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Bootstrap the escrow ledger")
    parser.add_argument(
        "--token",
        action="append",
        default=[],
        type=parse_token,
        metavar="SYMBOL=CONTRACT",
        help="Register a payout token (repeatable)",
    )
    parser.add_argument("--treasury", action="append", default=[], help="Grant TREASURY to an account (repeatable)")
    parser.add_argument("--dealer", action="append", default=[], help="Grant DEALER to an account (repeatable)")
    parser.add_argument("--issue-token", action="store_true", help="Print a bearer token for the admin account")
    args = parser.parse_args()

    asyncio.run(bootstrap(args.token, args.treasury, args.dealer, args.issue_token))


if __name__ == "__main__":
    main()
