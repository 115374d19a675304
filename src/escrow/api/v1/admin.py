"""Administrative endpoints: reconciliation, pause gate and role management."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.escrow.api.deps import get_caller, get_runtime
from src.escrow.api.v1.events import EventResponse, records_to_response
from src.escrow.core.roles import Role
from src.escrow.ledger.schemas import SettlementAdjustment
from src.escrow.runtime import LedgerRuntime

router = APIRouter(prefix="/admin", tags=["admin"])


class RecalcResponse(BaseModel):
    adjustments: list[SettlementAdjustment]
    events: list[EventResponse]


class AdminEventsResponse(BaseModel):
    events: list[EventResponse]


class RoleChangeResponse(BaseModel):
    role: Role
    account: str
    changed: bool
    events: list[EventResponse]


@router.post("/recalc", response_model=RecalcResponse)
async def recalc_settlement_balances(
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> RecalcResponse:
    """Reset every reserve to what the escrow holds beyond open exposure."""
    adjustments, records = await runtime.execute(runtime.service.recalc_settlement_balances, caller)
    return RecalcResponse(adjustments=adjustments, events=records_to_response(records))


@router.post("/pause", response_model=AdminEventsResponse)
async def pause(
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> AdminEventsResponse:
    _, records = await runtime.execute(runtime.service.pause, caller)
    return AdminEventsResponse(events=records_to_response(records))


@router.post("/unpause", response_model=AdminEventsResponse)
async def unpause(
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> AdminEventsResponse:
    _, records = await runtime.execute(runtime.service.unpause, caller)
    return AdminEventsResponse(events=records_to_response(records))


@router.put("/roles/{role}/{account}", response_model=RoleChangeResponse)
async def grant_role(
    role: Role,
    account: str,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> RoleChangeResponse:
    """Grant ``role``; granting a role already held changes nothing."""
    _, records = await runtime.execute(runtime.service.grant_role, caller, role, account)
    return RoleChangeResponse(
        role=role, account=account, changed=bool(records), events=records_to_response(records)
    )


@router.delete("/roles/{role}/{account}", response_model=RoleChangeResponse)
async def revoke_role(
    role: Role,
    account: str,
    caller: str = Depends(get_caller),
    runtime: LedgerRuntime = Depends(get_runtime),
) -> RoleChangeResponse:
    _, records = await runtime.execute(runtime.service.revoke_role, caller, role, account)
    return RoleChangeResponse(
        role=role, account=account, changed=bool(records), events=records_to_response(records)
    )
