"""FastAPI dependency injection for the ledger runtime and the calling account.

These dependencies are used in endpoint function signatures to inject the
running LedgerRuntime and the authenticated caller address.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.escrow.core.security import verify_token
from src.escrow.runtime import LedgerRuntime


async def get_runtime(request: Request) -> LedgerRuntime:
    """Retrieve the LedgerRuntime from app.state, 503 if not available."""
    runtime = getattr(request.app.state, "ledger", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger not initialized",
        )
    return runtime


async def get_caller(request: Request) -> str:
    """Extract the caller account from the Bearer JWT subject.

    Raises:
        HTTPException(401): If no valid token is provided.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:], token_type="access")
    return payload["sub"]
