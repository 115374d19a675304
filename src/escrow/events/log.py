"""Append-only, sequenced log of committed escrow events.

Only the service appends, and only after a unit of work commits, so the log
never contains events from a reverted call. Subscribers are notified
synchronously in commit order.

The in-memory log keeps a bounded window of the most recent records; the
ledger repository is the durable history (``LedgerRepository.list_events``).
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable

import structlog

from src.escrow.events.schemas import EscrowEvent, EventRecord

logger = structlog.get_logger(__name__)

Subscriber = Callable[[EventRecord], None]

DEFAULT_RETENTION = 10_000


class EventLog:
    """Ordered record of recently committed events.

    Args:
        start_sequence: Sequence number of the last event already persisted
            elsewhere (new records continue from it).
        retention: Number of most recent records kept in memory.
    """

    def __init__(self, start_sequence: int = 0, retention: int = DEFAULT_RETENTION) -> None:
        self._records: deque[EventRecord] = deque(maxlen=retention)
        self._sequence = start_sequence
        self._subscribers: list[Subscriber] = []

    @property
    def last_sequence(self) -> int:
        return self._sequence

    def __len__(self) -> int:
        return len(self._records)

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def extend(self, events: Iterable[EscrowEvent]) -> list[EventRecord]:
        """Append committed events and return their records.

        Runs after the unit of work has committed, so a failing subscriber is
        logged and never propagates to the caller.
        """
        records = []
        for event in events:
            self._sequence += 1
            record = EventRecord(sequence=self._sequence, event=event)
            self._records.append(record)
            records.append(record)
            logger.info(
                "event.emitted",
                sequence=record.sequence,
                event_name=event.name,
                args=event.args(),
            )
        for record in records:
            for callback in self._subscribers:
                try:
                    callback(record)
                except Exception:
                    logger.error(
                        "event.subscriber_failed",
                        sequence=record.sequence,
                        event_name=record.name,
                        exc_info=True,
                    )
        return records

    def since(self, sequence: int = 0, limit: int | None = None) -> list[EventRecord]:
        """Retained records with a sequence number greater than ``sequence``."""
        newer = []
        for record in reversed(self._records):
            if record.sequence <= sequence:
                break
            newer.append(record)
        newer.reverse()
        return newer if limit is None else newer[:limit]

    def named(self, name: str) -> list[EventRecord]:
        return [r for r in self._records if r.event.name == name]
