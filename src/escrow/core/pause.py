"""Process-wide halt switch for ledger-mutating entry points."""

from __future__ import annotations

import structlog

from src.escrow.core.errors import NotPausedError, PausedError
from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.events.schemas import Paused, Unpaused

logger = structlog.get_logger(__name__)


class PauseGate:
    """Single boolean gate checked at the top of every gated entry point."""

    def __init__(self, uow: UnitOfWork, paused: bool = False) -> None:
        self._uow = uow
        self._paused = paused

    @property
    def paused(self) -> bool:
        return self._paused

    def ensure_not_paused(self) -> None:
        """Fail fast before any state is touched.

        Raises:
            PausedError: If the gate is closed.
        """
        if self._paused:
            raise PausedError()

    def pause(self, account: str) -> None:
        if self._paused:
            raise PausedError()
        self._set(True)
        self._uow.emit(Paused(account=account))
        logger.warning("ledger.paused", account=account)

    def unpause(self, account: str) -> None:
        if not self._paused:
            raise NotPausedError()
        self._set(False)
        self._uow.emit(Unpaused(account=account))
        logger.warning("ledger.unpaused", account=account)

    def _set(self, value: bool) -> None:
        previous = self._paused
        self._uow.on_rollback(lambda: setattr(self, "_paused", previous))
        self._paused = value
