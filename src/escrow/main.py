"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, ledger error
handlers, lifespan events that restore (or initialize) the ledger from the
database, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.escrow.api.errors import register_exception_handlers
from src.escrow.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.escrow.api.v1 import health
from src.escrow.api.v1.router import router as v1_router
from src.escrow.assets.gateway import InMemoryTokenBank
from src.escrow.config import get_settings
from src.escrow.core.database import close_db, get_session, init_db
from src.escrow.core.monitoring import MetricsMiddleware, get_metrics_response
from src.escrow.persistence.repository import LedgerRepository
from src.escrow.runtime import LedgerRuntime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and load the ledger on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Asset gateway: in-process bank unless one was attached before startup
    assets = getattr(app.state, "assets", None)
    if assets is None:
        assets = InMemoryTokenBank()
        app.state.assets = assets

    repository = LedgerRepository(session_factory=get_session)
    app.state.ledger = await LedgerRuntime.open(settings, assets, repository)
    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        escrow=settings.ESCROW_ADDRESS,
        last_event_sequence=app.state.ledger.service.events.last_sequence,
    )

    yield

    await close_db()
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Escrow Settlement Ledger API",
        version="0.1.0",
        description="Escrowed deals, settlement reserves and batch settlement",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
