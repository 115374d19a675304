"""LedgerRuntime -- binds one EscrowService to its repository.

Mutating calls from async code go through ``execute``: a single asyncio lock
covers the in-memory call and the write of the records it changed, so the
database sees commits in the same order the service applied them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from src.escrow.assets.gateway import AssetGateway
from src.escrow.config import Settings
from src.escrow.events.schemas import EventRecord
from src.escrow.persistence.repository import LedgerRepository
from src.escrow.service import EscrowService

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LedgerRuntime:
    """Serialized access to the service with write-through persistence.

    Args:
        service: The ledger service.
        repository: Persists committed changes; None keeps the ledger in memory.
    """

    def __init__(self, service: EscrowService, repository: LedgerRepository | None = None) -> None:
        self.service = service
        self.repository = repository
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        settings: Settings,
        assets: AssetGateway,
        repository: LedgerRepository | None = None,
    ) -> LedgerRuntime:
        """Restore the persisted ledger, or initialize a new one from settings."""
        state = await repository.load_state() if repository is not None else None
        if state is not None:
            service = EscrowService.from_state(
                state,
                assets,
                settings.ESCROW_ADDRESS,
                refund_on_reject=settings.REFUND_ON_REJECT,
                event_retention=settings.EVENT_LOG_RETENTION,
            )
        else:
            service = EscrowService(
                assets,
                settings.ESCROW_ADDRESS,
                admin=settings.ADMIN_ADDRESS,
                initial_tokens=settings.INITIAL_TOKENS,
                refund_on_reject=settings.REFUND_ON_REJECT,
                event_retention=settings.EVENT_LOG_RETENTION,
            )
            logger.info(
                "ledger.initialized",
                admin=settings.ADMIN_ADDRESS,
                tokens=list(settings.INITIAL_TOKENS),
            )
        runtime = cls(service, repository)
        await runtime.flush()
        return runtime

    async def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> tuple[T, list[EventRecord]]:
        """Run a service entry point and persist what it changed.

        Returns:
            The entry point's result and the event records it committed.
        """
        async with self._write_lock:
            before = self.service.events.last_sequence
            result = operation(*args, **kwargs)
            records = self.service.events.since(before)
            await self.flush()
            return result, records

    async def flush(self) -> None:
        """Write pending changes to the repository, if there is one."""
        if self.repository is None:
            return
        changes = self.service.drain_changes()
        if changes.empty:
            return
        try:
            await self.repository.apply(changes)
        except Exception:
            self.service.requeue_changes(changes)
            logger.error("ledger.persist_failed", events=len(changes.events), exc_info=True)
            raise
