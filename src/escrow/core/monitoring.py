"""Prometheus metrics for the escrow ledger and its HTTP surface.

Provides:
- Ledger counters incremented by EscrowService (committed operations,
  failures by error kind, settlement outcomes and skips)
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- get_metrics_response(): body for the /metrics endpoint
"""

from __future__ import annotations

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# ── Ledger Metrics ───────────────────────────────────────────────────────────

escrow_operations_total = Counter(
    "escrow_operations_total",
    "Committed escrow entry point calls",
    ["operation"],
)

escrow_operation_failures_total = Counter(
    "escrow_operation_failures_total",
    "Escrow entry point calls that reverted",
    ["operation", "error"],
)

escrow_settled_deals_total = Counter(
    "escrow_settled_deals_total",
    "Deals resolved by batch settlement",
    ["outcome"],
)

escrow_settlement_skips_total = Counter(
    "escrow_settlement_skips_total",
    "Batch settlement entries left untouched",
    ["reason"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency per route template."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(time.monotonic() - start)
        return response


def get_metrics_response() -> Response:
    """Render the default registry in Prometheus text format."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
