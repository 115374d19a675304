"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.escrow.api.v1 import admin, deals, events, settlement, tokens

router = APIRouter(prefix="/v1")

router.include_router(tokens.router)
router.include_router(deals.router)
router.include_router(settlement.router)
router.include_router(admin.router)
router.include_router(events.router)
