"""Event log endpoint and the event response schema shared by all routers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.escrow.api.deps import get_runtime
from src.escrow.events.schemas import EventRecord
from src.escrow.runtime import LedgerRuntime

router = APIRouter(prefix="/events", tags=["events"])


class EventResponse(BaseModel):
    """One committed event with its log sequence number."""

    sequence: int
    name: str
    args: dict[str, Any]
    recorded_at: str


def records_to_response(records: list[EventRecord]) -> list[EventResponse]:
    return [EventResponse(**record.to_dict()) for record in records]


@router.get("", response_model=list[EventResponse])
async def list_events(
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> list[EventResponse]:
    """Committed events with a sequence number greater than ``after``.

    Reads the persisted log when a repository is configured, so events from
    before the last restart are included.
    """
    if runtime.repository is not None:
        records = await runtime.repository.list_events(after=after, limit=limit)
    else:
        records = runtime.service.events.since(after, limit=limit)
    return records_to_response(records)
