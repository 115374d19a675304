"""Tests for LedgerRepository and LedgerRuntime against in-memory SQLite.

Tests cover:
- load_state on an empty database
- apply + load_state reproduce the service's exported state
- restored service continues deal ids, event sequence, roles and pause flag
- amounts beyond 64 bits survive the decimal text columns
- list_events paging
- LedgerRuntime.open initializes once, then restores
- a failed write is kept and persisted with the next call
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import ADMIN, ALICE, BOB, DEALER, ESCROW, TREASURY, WETH, fund, fund_confirmed
from src.escrow.config import Settings
from src.escrow.core.database import Base
from src.escrow.core.roles import Role
from src.escrow.deals.schemas import DealStatus
from src.escrow.persistence.repository import LedgerRepository
from src.escrow.runtime import LedgerRuntime
from src.escrow.service import EscrowService


@pytest_asyncio.fixture
async def repository() -> AsyncGenerator[LedgerRepository, None]:
    """Repository over a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def session_factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield LedgerRepository(session_factory)
    await engine.dispose()


class FailingOnceRepository:
    """Delegates to a repository but fails the next write while ``fail_next`` is set."""

    def __init__(self, inner: LedgerRepository) -> None:
        self.inner = inner
        self.fail_next = False

    async def apply(self, changes) -> None:
        if self.fail_next:
            self.fail_next = False
            raise ConnectionError("database unavailable")
        await self.inner.apply(changes)

    async def load_state(self):
        return await self.inner.load_state()


class TestLoadState:
    @pytest.mark.asyncio
    async def test_empty_database_has_no_state(self, repository):
        assert await repository.load_state() is None

    @pytest.mark.asyncio
    async def test_round_trip_matches_export(self, repository, service):
        service.deposit_settlement(TREASURY, "WETH", 5000)
        fund_confirmed(service, ALICE, payout=1500)
        fund(service, ALICE)
        fund(service, BOB)
        service.request_close(ALICE, 1, 3)
        await repository.apply(service.drain_changes())

        loaded = await repository.load_state()

        assert loaded == service.export_state()

    @pytest.mark.asyncio
    async def test_incremental_apply_updates_rows(self, repository, service):
        fund_confirmed(service, ALICE)
        await repository.apply(service.drain_changes())
        service.settle_deals(DEALER, [], [(ALICE, 1)])
        service.revoke_role(ADMIN, Role.DEALER, DEALER)
        service.pause(ADMIN)
        await repository.apply(service.drain_changes())

        loaded = await repository.load_state()

        assert loaded.deals[0].status == DealStatus.SETTLED
        assert loaded.tokens[0].open == 0
        assert DEALER not in loaded.roles[Role.DEALER]
        assert loaded.paused is True
        assert loaded.last_event_sequence == service.events.last_sequence

    @pytest.mark.asyncio
    async def test_large_amounts_survive(self, repository, service, bank):
        huge = 2**200
        bank.mint(WETH, ALICE, huge)
        bank.approve(WETH, ALICE, ESCROW, huge)
        fund(service, ALICE, investment=huge)
        await repository.apply(service.drain_changes())

        loaded = await repository.load_state()

        assert loaded.deals[0].investment == huge
        assert loaded.tokens[0].open == huge


class TestRestore:
    @pytest.mark.asyncio
    async def test_restored_service_continues(self, repository, service, bank):
        fund(service, ALICE)
        fund(service, ALICE)
        await repository.apply(service.drain_changes())
        last_sequence = service.events.last_sequence

        restored = EscrowService.from_state(await repository.load_state(), bank, ESCROW)

        assert restored.events.last_sequence == last_sequence
        assert restored.has_role(Role.DEALER, DEALER)
        records = restored.fund_deal(ALICE, "third", 0, 0, 0, "WETH", 10)
        assert records[0].event.deal_id == 3
        assert records[0].sequence == last_sequence + 1
        assert restored.get_balances()[0].open == 2010


class TestListEvents:
    @pytest.mark.asyncio
    async def test_paging(self, repository, service):
        for _ in range(3):
            fund(service)
        await repository.apply(service.drain_changes())
        last = service.events.last_sequence

        tail = await repository.list_events(after=last - 2)
        assert [r.name for r in tail] == ["NewDeal", "NewDeal"]
        assert [r.event.deal_id for r in tail] == [2, 3]

        first = await repository.list_events(after=0, limit=1)
        assert [r.sequence for r in first] == [1]
        assert first[0].event.args() == ("admin", ADMIN, ADMIN)


class TestLedgerRuntime:
    @pytest.mark.asyncio
    async def test_open_initializes_then_restores(self, repository, bank):
        settings = Settings(
            ESCROW_ADDRESS=ESCROW,
            ADMIN_ADDRESS=ADMIN,
            INITIAL_TOKENS={"WETH": WETH},
        )

        runtime = await LedgerRuntime.open(settings, bank, repository)
        _, records = await runtime.execute(runtime.service.fund_deal, ALICE, "x", 0, 0, 0, "WETH", 25)
        assert [r.name for r in records] == ["NewDeal"]

        reopened = await LedgerRuntime.open(settings, bank, repository)

        assert reopened.service.get_deal(ALICE, 1).investment == 25
        assert reopened.service.events.last_sequence == runtime.service.events.last_sequence
        assert [b.token for b in reopened.service.get_balances()] == ["WETH"]
        # Initialization events were written once
        persisted = await repository.list_events(after=0, limit=100)
        assert [r.name for r in persisted].count("TokenRegistered") == 1

    @pytest.mark.asyncio
    async def test_failed_write_is_retried_with_the_next_call(self, repository, service, bank):
        flaky = FailingOnceRepository(repository)
        runtime = LedgerRuntime(service, flaky)
        await repository.apply(service.drain_changes())

        flaky.fail_next = True
        with pytest.raises(ConnectionError):
            await runtime.execute(service.fund_deal, ALICE, "first", 0, 0, 0, "WETH", 10)
        await runtime.execute(service.fund_deal, ALICE, "second", 0, 0, 0, "WETH", 20)

        loaded = await repository.load_state()
        assert [(d.deal_id, d.investment) for d in loaded.deals] == [(1, 10), (2, 20)]
        assert loaded.tokens[0].open == 30
        persisted = await repository.list_events(after=0, limit=100)
        assert [r.event.deal_id for r in persisted if r.name == "NewDeal"] == [1, 2]
        assert [r.sequence for r in persisted] == list(range(1, service.events.last_sequence + 1))

        restored = EscrowService.from_state(loaded, bank, ESCROW)
        assert [d.deal_id for d in restored.list_deals(ALICE)] == [1, 2]
