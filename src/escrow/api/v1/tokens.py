"""Token registry endpoints: register, rebind and per-token balances."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.escrow.api.deps import get_caller, get_runtime
from src.escrow.api.v1.events import EventResponse, records_to_response
from src.escrow.runtime import LedgerRuntime

router = APIRouter(prefix="/tokens", tags=["tokens"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class RegisterTokenRequest(BaseModel):
    symbol: str = Field(min_length=1, max_length=32)
    token_contract: str = Field(min_length=1)


class ReregisterTokenRequest(BaseModel):
    token_contract: str = Field(min_length=1)


class TokenBalanceResponse(BaseModel):
    """Live balance next to the stored reserve and exposure counters."""

    token: str
    token_contract: str
    balance: int
    settlement: int
    open: int
    drift: int


class TokenEventsResponse(BaseModel):
    events: list[EventResponse]


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=TokenEventsResponse, status_code=status.HTTP_201_CREATED)
async def register_token(
    body: RegisterTokenRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> TokenEventsResponse:
    _, records = await runtime.execute(
        runtime.service.register_token, caller, body.symbol, body.token_contract
    )
    return TokenEventsResponse(events=records_to_response(records))


@router.put("/{symbol}", response_model=TokenEventsResponse)
async def reregister_token(
    symbol: str,
    body: ReregisterTokenRequest,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> TokenEventsResponse:
    """Rebind ``symbol`` to another contract; counters are left untouched."""
    _, records = await runtime.execute(
        runtime.service.reregister_token, caller, symbol, body.token_contract
    )
    return TokenEventsResponse(events=records_to_response(records))


@router.get("/balances", response_model=list[TokenBalanceResponse])
async def get_balances(runtime: LedgerRuntime = Depends(get_runtime)) -> list[TokenBalanceResponse]:
    return [
        TokenBalanceResponse(**balance.model_dump(), drift=balance.drift)
        for balance in runtime.service.get_balances()
    ]
