"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from src.escrow.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic liveness check, with the ledger's pause flag once it is loaded."""
    settings = get_settings()
    body = {"status": "ok", "environment": settings.ENVIRONMENT.value}
    runtime = getattr(request.app.state, "ledger", None)
    if runtime is not None:
        body["paused"] = runtime.service.paused
        body["last_event_sequence"] = runtime.service.events.last_sequence
    return body
