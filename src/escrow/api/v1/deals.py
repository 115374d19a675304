"""REST API endpoints for the deal lifecycle.

Depositors fund deals and request closes on their own deals; dealer
operations address a deal by owner address and per-owner id. All mutating
endpoints require a Bearer token whose subject is the calling account.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.escrow.api.deps import get_caller, get_runtime
from src.escrow.api.v1.events import EventResponse, records_to_response
from src.escrow.deals.schemas import Deal
from src.escrow.events.schemas import EventRecord
from src.escrow.runtime import LedgerRuntime

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DealResponse(BaseModel):
    """Deal record with its status as name and externally visible code."""

    owner: str
    deal_id: int
    label: str
    terms: int
    aux_param: int
    created_at: int
    token: str
    investment: int
    payout: int
    status: str
    status_code: int
    confirm_aux_param: int | None = None
    close_aux_param: int | None = None
    paid_out: int


class DealOperationResponse(BaseModel):
    deal: DealResponse
    events: list[EventResponse]


# ── Request Schemas ──────────────────────────────────────────────────────────


class FundDealRequest(BaseModel):
    label: str
    terms: int = Field(ge=0)
    aux_param: int = Field(ge=0)
    created_at: int = Field(ge=0)
    token: str
    investment: int = Field(ge=0)


class ConfirmDealRequest(BaseModel):
    payout: int = Field(ge=0)
    aux_param: int = Field(ge=0)


class CloseRequest(BaseModel):
    aux_param: int = Field(ge=0)


class CloseDealRequest(BaseModel):
    payout: int = Field(ge=0)


class ReasonRequest(BaseModel):
    reason: str = ""


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _deal_to_response(deal: Deal) -> DealResponse:
    data = deal.model_dump(exclude={"status"})
    return DealResponse(**data, status=deal.status.name, status_code=int(deal.status))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=DealOperationResponse, status_code=status.HTTP_201_CREATED)
async def fund_deal(
    body: FundDealRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    """Fund a new deal; the investment is pulled from the caller's allowance."""
    _, records = await runtime.execute(
        runtime.service.fund_deal,
        caller,
        body.label,
        body.terms,
        body.aux_param,
        body.created_at,
        body.token,
        body.investment,
    )
    deal_id = records[0].event.deal_id
    deal = runtime.service.get_deal(caller, deal_id)
    return DealOperationResponse(deal=_deal_to_response(deal), events=records_to_response(records))


@router.get("/{owner}", response_model=list[DealResponse])
async def list_deals(owner: str, runtime: LedgerRuntime = Depends(get_runtime)) -> list[DealResponse]:
    return [_deal_to_response(d) for d in runtime.service.list_deals(owner)]


@router.get("/{owner}/{deal_id}", response_model=DealResponse)
async def get_deal(
    owner: str, deal_id: int, runtime: LedgerRuntime = Depends(get_runtime)
) -> DealResponse:
    return _deal_to_response(runtime.service.get_deal(owner, deal_id))


@router.post("/{owner}/{deal_id}/confirm", response_model=DealOperationResponse)
async def confirm_deal(
    owner: str,
    deal_id: int,
    body: ConfirmDealRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    _, records = await runtime.execute(
        runtime.service.confirm_deal, caller, owner, deal_id, body.payout, body.aux_param
    )
    return _operation_response(runtime, owner, deal_id, records)


@router.post("/mine/{deal_id}/close-request", response_model=DealOperationResponse)
async def request_close(
    deal_id: int,
    body: CloseRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    """Ask for early close of one of the caller's own deals."""
    _, records = await runtime.execute(runtime.service.request_close, caller, deal_id, body.aux_param)
    return _operation_response(runtime, caller, deal_id, records)


@router.post("/{owner}/{deal_id}/reject-close", response_model=DealOperationResponse)
async def reject_close(
    owner: str,
    deal_id: int,
    body: ReasonRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    _, records = await runtime.execute(runtime.service.reject_close, caller, owner, deal_id, body.reason)
    return _operation_response(runtime, owner, deal_id, records)


@router.post("/{owner}/{deal_id}/close", response_model=DealOperationResponse)
async def close_deal(
    owner: str,
    deal_id: int,
    body: CloseDealRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    _, records = await runtime.execute(runtime.service.close_deal, caller, owner, deal_id, body.payout)
    return _operation_response(runtime, owner, deal_id, records)


@router.post("/{owner}/{deal_id}/reject", response_model=DealOperationResponse)
async def reject_deal(
    owner: str,
    deal_id: int,
    body: ReasonRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> DealOperationResponse:
    _, records = await runtime.execute(runtime.service.reject_deal, caller, owner, deal_id, body.reason)
    return _operation_response(runtime, owner, deal_id, records)


def _operation_response(
    runtime: LedgerRuntime, owner: str, deal_id: int, records: list[EventRecord]
) -> DealOperationResponse:
    deal = runtime.service.get_deal(owner, deal_id)
    return DealOperationResponse(deal=_deal_to_response(deal), events=records_to_response(records))
