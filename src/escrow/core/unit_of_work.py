"""Per-call undo journal for the escrow entry points.

Each entry point runs inside exactly one unit of work. Components call
``remember(mapping, key)`` before mutating a record; the journal keeps a deep
copy of the prior value (or notes that the key was absent) the first time a
key is touched. Events and outgoing asset transfers are buffered on the unit
and only leave it when the service commits.

Rollback restores every remembered key, drops buffered events and transfers,
and leaves the component state exactly as it was before the call began.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Hashable, MutableMapping
from typing import Any

from pydantic import BaseModel

from src.escrow.assets.gateway import Transfer
from src.escrow.events.schemas import EscrowEvent

_MISSING = object()


class CommitResult(BaseModel):
    """What a committed unit of work produced."""

    events: list[EscrowEvent]
    transfers: list[Transfer]
    touched: dict[str, list[Any]]


class UnitOfWork:
    """Journal of prior values, pending events and pending transfers."""

    def __init__(self) -> None:
        self._active = False
        self._undo: list[tuple[MutableMapping, Hashable, Any]] = []
        self._seen: set[tuple[int, Hashable]] = set()
        self._names: dict[int, str] = {}
        self._touched: dict[str, list[Any]] = {}
        self._callbacks: list[Callable[[], None]] = []
        self._events: list[EscrowEvent] = []
        self._transfers: list[Transfer] = []

    @property
    def active(self) -> bool:
        return self._active

    def track(self, name: str, mapping: MutableMapping) -> None:
        """Label a mapping so commits can report which of its keys changed."""
        self._names[id(mapping)] = name

    def begin(self) -> None:
        if self._active:
            raise RuntimeError("unit of work already active")
        self._reset()
        self._active = True

    def remember(self, mapping: MutableMapping, key: Hashable) -> None:
        """Journal the current value of ``mapping[key]`` before it changes."""
        if not self._active:
            return
        marker = (id(mapping), key)
        if marker in self._seen:
            return
        self._seen.add(marker)
        previous = copy.deepcopy(mapping[key]) if key in mapping else _MISSING
        self._undo.append((mapping, key, previous))
        name = self._names.get(id(mapping))
        if name is not None:
            self._touched.setdefault(name, []).append(key)

    def on_rollback(self, callback: Callable[[], None]) -> None:
        """Register a callback that undoes a change not held in a mapping."""
        if self._active:
            self._callbacks.append(callback)

    def emit(self, event: EscrowEvent) -> None:
        self._require_active()
        self._events.append(event)

    def enqueue_transfer(self, transfer: Transfer) -> None:
        self._require_active()
        self._transfers.append(transfer)

    @property
    def pending_transfers(self) -> list[Transfer]:
        return list(self._transfers)

    def commit(self) -> CommitResult:
        self._require_active()
        result = CommitResult(
            events=list(self._events),
            transfers=list(self._transfers),
            touched={name: list(keys) for name, keys in self._touched.items()},
        )
        self._reset()
        return result

    def rollback(self) -> None:
        for mapping, key, previous in reversed(self._undo):
            if previous is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = previous
        for callback in reversed(self._callbacks):
            callback()
        self._reset()

    def _require_active(self) -> None:
        if not self._active:
            raise RuntimeError("no active unit of work")

    def _reset(self) -> None:
        self._active = False
        self._undo = []
        self._seen = set()
        self._touched = {}
        self._callbacks = []
        self._events = []
        self._transfers = []
