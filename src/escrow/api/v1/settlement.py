"""Settlement reserve funding and batch settlement endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.escrow.api.deps import get_caller, get_runtime
from src.escrow.api.v1.events import EventResponse, records_to_response
from src.escrow.config import get_settings
from src.escrow.deals.schemas import DealRef
from src.escrow.runtime import LedgerRuntime

router = APIRouter(prefix="/settlement", tags=["settlement"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class DepositRequest(BaseModel):
    token: str
    amount: int = Field(ge=0)


class WithdrawRequest(BaseModel):
    to: str
    token: str
    amount: int = Field(ge=0)


class SettleRequest(BaseModel):
    winners: list[DealRef] = Field(default_factory=list)
    losers: list[DealRef] = Field(default_factory=list)


class SkippedEntryResponse(BaseModel):
    owner: str
    deal_id: int
    won: bool
    reason: str


class SettleResponse(BaseModel):
    settled: list[dict]
    skipped: list[SkippedEntryResponse]
    retryable: list[DealRef]
    events: list[EventResponse]


class SettlementEventsResponse(BaseModel):
    events: list[EventResponse]


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/deposit", response_model=SettlementEventsResponse)
async def deposit_settlement(
    body: DepositRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> SettlementEventsResponse:
    """Pull ``amount`` from the caller into the token's settlement reserve."""
    _, records = await runtime.execute(runtime.service.deposit_settlement, caller, body.token, body.amount)
    return SettlementEventsResponse(events=records_to_response(records))


@router.post("/withdraw", response_model=SettlementEventsResponse)
async def withdraw_settlement(
    body: WithdrawRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> SettlementEventsResponse:
    _, records = await runtime.execute(
        runtime.service.withdraw_settlement, caller, body.to, body.token, body.amount
    )
    return SettlementEventsResponse(events=records_to_response(records))


@router.post("/settle", response_model=SettleResponse)
async def settle_deals(
    body: SettleRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> SettleResponse:
    """Resolve a batch of confirmed deals into winners and losers.

    Entries that cannot settle right now are reported in ``skipped``; winners
    held back by a thin reserve are listed again in ``retryable``.
    """
    max_batch = get_settings().MAX_SETTLEMENT_BATCH
    if len(body.winners) + len(body.losers) > max_batch:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Batch exceeds {max_batch} entries",
        )

    report, records = await runtime.execute(
        runtime.service.settle_deals, caller, body.winners, body.losers
    )
    return SettleResponse(
        settled=[event.model_dump() for event in report.settled],
        skipped=[
            SkippedEntryResponse(
                owner=s.ref.owner, deal_id=s.ref.deal_id, won=s.won, reason=s.reason.value
            )
            for s in report.skipped
        ],
        retryable=report.retryable,
        events=records_to_response(records),
    )
